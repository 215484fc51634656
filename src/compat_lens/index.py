from __future__ import annotations

from typing import Mapping, Protocol, Sequence

from compat_lens.environment import InstalledDistribution, runtime_requirements
from compat_lens.framework import normalize_project_name
from compat_lens.index_client import ReleaseLookupResult
from compat_lens.models import NOT_FOUND, DependencyEntity, FoundDependency, SourceOrigin


class DependencyIndex(Protocol):
    """
    已安装依赖与其最新发布版本的只读查询接口。
    """

    def list_all(self) -> list[FoundDependency]: ...

    def latest_for(self, name: str) -> DependencyEntity: ...


class SnapshotIndex:
    """
    基于一次环境扫描与一次索引查询结果构建的 DependencyIndex。

    每次调用都构造新的实体；实体通过 latest_for 惰性获取最新版本。
    """

    def __init__(
        self,
        installed: Sequence[InstalledDistribution],
        lookups: Mapping[str, ReleaseLookupResult],
    ) -> None:
        self._installed = list(installed)
        self._lookups = dict(lookups)

    def _lookup(self, name: str) -> ReleaseLookupResult | None:
        return self._lookups.get(normalize_project_name(name))

    def list_all(self) -> list[FoundDependency]:
        entities: list[FoundDependency] = []
        for dist in self._installed:
            lookup = self._lookup(dist.name)
            entities.append(
                FoundDependency(
                    name=dist.name,
                    version=dist.version,
                    release_date=lookup.release_date_of(dist.version) if lookup else None,
                    source_origin=dist.source_origin,
                    requirements=dist.requirements,
                    loader=self.latest_for,
                )
            )
        return entities

    def latest_for(self, name: str) -> DependencyEntity:
        """
        返回最新发布版本；未发布、查询失败或无可用版本时返回 NOT_FOUND。
        """
        lookup = self._lookup(name)
        if lookup is None or lookup.latest is None:
            return NOT_FOUND
        return FoundDependency(
            name=name,
            version=lookup.latest,
            release_date=lookup.release_date_of(lookup.latest),
            source_origin=SourceOrigin.REGISTRY,
            requirements=runtime_requirements(lookup.requires_dist),
            loader=self.latest_for,
        )
