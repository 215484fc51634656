from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Union

from packaging.requirements import Requirement
from packaging.version import Version


class SourceOrigin(str, Enum):
    """
    依赖的安装来源：已发布的版本或直接来自版本控制仓库。
    """

    REGISTRY = "registry"
    VCS = "vcs"


class ClassificationState(str, Enum):
    """
    依赖相对目标框架版本的兼容性分类。
    """

    COMPATIBLE = "compatible"
    LATEST_COMPATIBLE = "latest_compatible"
    INCOMPATIBLE = "incompatible"
    NO_NEW_VERSION = "no_new_version"


@dataclass(frozen=True, slots=True)
class NotFoundDependency:
    """
    “索引中不存在已发布版本”的终结标记（全局唯一实例 NOT_FOUND）。
    """

    name: None = None
    version: None = None
    release_date: None = None
    source_origin: None = None
    requirements: tuple[Requirement, ...] = ()

    def latest_version(self) -> NotFoundDependency:
        return self

    def __str__(self) -> str:
        return "NOT FOUND"


NOT_FOUND = NotFoundDependency()


@dataclass(slots=True)
class FoundDependency:
    """
    一个已安装的依赖，或某依赖在索引中的最新发布版本。

    latest_version() 首次调用时通过 loader 查询并缓存，之后不再重复查询。
    """

    name: str
    version: Version
    release_date: datetime | None = None
    source_origin: SourceOrigin = SourceOrigin.REGISTRY
    requirements: tuple[Requirement, ...] = ()
    loader: Callable[[str], "DependencyEntity"] | None = field(default=None, repr=False, compare=False)
    _latest: "DependencyEntity | None" = field(default=None, init=False, repr=False, compare=False)

    def latest_version(self) -> DependencyEntity:
        """
        返回最新发布版本对应的实体（无 loader 或查不到时为 NOT_FOUND）。
        """
        if self._latest is None:
            self._latest = self.loader(self.name) if self.loader is not None else NOT_FOUND
        return self._latest

    @property
    def sourced_from_vcs(self) -> bool:
        return self.source_origin is SourceOrigin.VCS

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


DependencyEntity = Union[FoundDependency, NotFoundDependency]
