from __future__ import annotations

import logging
from datetime import datetime, timedelta
from itertools import groupby
from typing import TYPE_CHECKING

from packaging.requirements import Requirement
from packaging.version import Version

from compat_lens.errors import EmptyDependencySetError
from compat_lens.framework import FrameworkFamily, normalize_project_name
from compat_lens.models import (
    ClassificationState,
    DependencyEntity,
    FoundDependency,
    NotFoundDependency,
    SourceOrigin,
)
from compat_lens.report import CompatibilityReport, OutdatedReport

if TYPE_CHECKING:
    from compat_lens.index import DependencyIndex

logger = logging.getLogger(__name__)


def unsatisfied_framework_requirements(
    entity: DependencyEntity,
    framework_version: Version,
    family: FrameworkFamily,
) -> tuple[Requirement, ...]:
    """
    返回 entity 对框架家族声明的、且不被 framework_version 满足的运行时依赖。
    """
    if isinstance(entity, NotFoundDependency):
        return ()

    return tuple(
        req
        for req in entity.requirements
        if normalize_project_name(req.name) in family.members
        and not req.specifier.contains(framework_version, prereleases=True)
    )


def is_compatible(entity: DependencyEntity, framework_version: Version, family: FrameworkFamily) -> bool:
    """
    判断 entity 是否可与 framework_version 共同使用（NOT_FOUND 永远不兼容）。
    """
    if isinstance(entity, NotFoundDependency):
        return False
    return not unsatisfied_framework_requirements(entity, framework_version, family)


def classify(
    entity: DependencyEntity,
    framework_version: Version,
    family: FrameworkFamily,
) -> ClassificationState:
    """
    按固定顺序判定分类：自身兼容 > 最新版兼容 > 无新版本 > 不兼容。
    """
    if is_compatible(entity, framework_version, family):
        return ClassificationState.COMPATIBLE

    latest = entity.latest_version()
    if is_compatible(latest, framework_version, family):
        return ClassificationState.LATEST_COMPATIBLE
    if isinstance(latest, NotFoundDependency):
        return ClassificationState.NO_NEW_VERSION
    return ClassificationState.INCOMPATIBLE


def is_up_to_date(entity: DependencyEntity) -> bool:
    """
    已安装版本等于最新发布版本时视为最新；NOT_FOUND 永远不是最新。
    """
    if isinstance(entity, NotFoundDependency):
        return False
    latest = entity.latest_version()
    if isinstance(latest, NotFoundDependency):
        return False
    return entity.version == latest.version


def release_age(entity: DependencyEntity, now: datetime) -> timedelta | None:
    """
    计算发布至今的时长；发布时间未知时返回 None。
    """
    if isinstance(entity, NotFoundDependency) or entity.release_date is None:
        return None
    return now - entity.release_date


def _compatibility_sort_key(
    entity: FoundDependency, framework_version: Version, family: FrameworkFamily
) -> tuple[int, str]:
    state = classify(entity, framework_version, family)
    return (0 if state is ClassificationState.LATEST_COMPATIBLE else 1, entity.name)


def compatibility_report(
    index: DependencyIndex,
    framework_version: Version,
    family: FrameworkFamily,
    *,
    include_framework_packages: bool = False,
) -> CompatibilityReport:
    """
    找出与目标框架版本不兼容的依赖，排序后按分类分组。

    “升级即可修复”的依赖排在最前，其余按名称排序；兼容的依赖不会出现在任何分组中。
    默认不检查框架家族自身的成员包。
    """
    candidates = [
        entity
        for entity in index.list_all()
        if not is_compatible(entity, framework_version, family)
        and (include_framework_packages or entity.name not in family)
    ]
    candidates.sort(key=lambda e: _compatibility_sort_key(e, framework_version, family))

    buckets: dict[ClassificationState, list[FoundDependency]] = {
        ClassificationState.LATEST_COMPATIBLE: [],
        ClassificationState.INCOMPATIBLE: [],
        ClassificationState.NO_NEW_VERSION: [],
    }
    for state, group in groupby(candidates, key=lambda e: classify(e, framework_version, family)):
        buckets[state].extend(group)

    report = CompatibilityReport(
        family=family,
        framework_version=framework_version,
        latest_compatible=buckets[ClassificationState.LATEST_COMPATIBLE],
        incompatible=buckets[ClassificationState.INCOMPATIBLE],
        no_new_version=buckets[ClassificationState.NO_NEW_VERSION],
    )
    logger.info("%d dependencies incompatible with %s %s", report.incompatible_count, family.name, framework_version)
    return report


def _release_date_sort_key(entity: FoundDependency) -> tuple[int, datetime, str]:
    if entity.release_date is None:
        return (1, datetime.min, entity.name)
    return (0, entity.release_date, entity.name)


def _round_half_up_percentage(part: int, total: int) -> int:
    return (200 * part + total) // (2 * total)


def outdated_report(index: DependencyIndex) -> OutdatedReport:
    """
    统计过期依赖：按发布时间升序（最久未更新的在前，时间未知的排最后）。

    依赖集合为空时抛出 EmptyDependencySetError，而不是返回 0%。
    """
    entities = index.list_all()
    total = len(entities)
    if total == 0:
        raise EmptyDependencySetError()

    out_of_date = sorted((e for e in entities if not is_up_to_date(e)), key=_release_date_sort_key)
    vcs_count = sum(1 for e in entities if e.source_origin is SourceOrigin.VCS)

    report = OutdatedReport(
        out_of_date=out_of_date,
        vcs_count=vcs_count,
        total=total,
        percentage_out_of_date=_round_half_up_percentage(len(out_of_date), total),
    )
    logger.info("%d of %d dependencies out of date", report.outdated_count, total)
    return report
