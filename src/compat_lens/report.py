from __future__ import annotations

from dataclasses import dataclass, field

from packaging.version import Version

from compat_lens.framework import FrameworkFamily
from compat_lens.models import FoundDependency


@dataclass(frozen=True, slots=True)
class CompatibilityReport:
    """
    兼容性检查结果：按分类分组的不兼容依赖（各组内已排序）。
    """

    family: FrameworkFamily
    framework_version: Version
    latest_compatible: list[FoundDependency] = field(default_factory=list)
    incompatible: list[FoundDependency] = field(default_factory=list)
    no_new_version: list[FoundDependency] = field(default_factory=list)

    @property
    def framework(self) -> str:
        return self.family.name

    @property
    def incompatible_count(self) -> int:
        return len(self.latest_compatible) + len(self.incompatible) + len(self.no_new_version)


@dataclass(frozen=True, slots=True)
class OutdatedReport:
    """
    过期检查结果：按发布时间升序排列的过期依赖与统计信息。
    """

    out_of_date: list[FoundDependency]
    vcs_count: int
    total: int
    percentage_out_of_date: int

    @property
    def outdated_count(self) -> int:
        return len(self.out_of_date)
