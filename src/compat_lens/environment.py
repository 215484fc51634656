from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from importlib import metadata
from typing import Iterable

from packaging.requirements import InvalidRequirement, Requirement
from packaging.version import InvalidVersion, Version

from compat_lens.framework import normalize_project_name
from compat_lens.models import SourceOrigin

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InstalledDistribution:
    """
    环境中一个已安装分发包的元数据快照。
    """

    name: str
    version: Version
    requirements: tuple[Requirement, ...]
    source_origin: SourceOrigin


def runtime_requirements(raw_requirements: Iterable[str] | None) -> tuple[Requirement, ...]:
    """
    解析 Requires-Dist 列表，只保留当前解释器下、未选择 extra 时生效的运行时依赖。
    """
    requirements: list[Requirement] = []
    for raw in raw_requirements or []:
        try:
            req = Requirement(raw)
        except InvalidRequirement as exc:
            logger.debug("skipping invalid requirement %r: %s", raw, exc)
            continue
        if req.marker is not None and not req.marker.evaluate({"extra": ""}):
            continue
        requirements.append(req)
    return tuple(requirements)


def detect_source_origin(direct_url_text: str | None) -> SourceOrigin:
    """
    根据 PEP 610 的 direct_url.json 判断是否直接安装自版本控制仓库。
    """
    if not direct_url_text:
        return SourceOrigin.REGISTRY
    try:
        data = json.loads(direct_url_text)
    except ValueError:
        return SourceOrigin.REGISTRY
    if isinstance(data, dict) and isinstance(data.get("vcs_info"), dict):
        return SourceOrigin.VCS
    return SourceOrigin.REGISTRY


def _iter_distributions(paths: Iterable[str] | None) -> Iterable[metadata.Distribution]:
    """
    枚举指定路径（默认 sys.path）下的分发包。
    """
    if paths:
        return metadata.distributions(path=list(paths))
    return metadata.distributions()


def scan_installed(
    paths: Iterable[str] | None = None,
    *,
    exclude: Iterable[str] = (),
) -> list[InstalledDistribution]:
    """
    扫描已安装的分发包；同名包以先出现者为准，版本号非法的包会被跳过。
    """
    excluded = {normalize_project_name(n) for n in exclude}
    seen: set[str] = set()
    installed: list[InstalledDistribution] = []

    for dist in _iter_distributions(paths):
        name = dist.metadata.get("Name")
        if not name:
            continue
        normalized = normalize_project_name(name)
        if normalized in seen or normalized in excluded:
            continue
        seen.add(normalized)

        try:
            version = Version(dist.version or "")
        except InvalidVersion:
            logger.warning("skipping %s: invalid version %r", name, dist.version)
            continue

        installed.append(
            InstalledDistribution(
                name=name,
                version=version,
                requirements=runtime_requirements(dist.requires),
                source_origin=detect_source_origin(dist.read_text("direct_url.json")),
            )
        )

    logger.info("found %d installed distributions", len(installed))
    return installed
