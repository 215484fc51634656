from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from packaging.version import InvalidVersion, Version

from compat_lens.errors import MalformedFrameworkVersionError, UnknownFrameworkError

_NORMALIZE_RE = re.compile(r"[-_.]+")


def normalize_project_name(name: str) -> str:
    """
    将包名按 PEP 503 规则规范化（用于框架成员判断、缓存键与对比）。
    """
    return _NORMALIZE_RE.sub("-", name).lower()


@dataclass(frozen=True, slots=True)
class FrameworkFamily:
    """
    同步发版、共享同一版本策略的一组包（核心包及其官方配套包）。
    """

    name: str
    members: frozenset[str]
    default_version: str

    def __contains__(self, project_name: object) -> bool:
        if not isinstance(project_name, str):
            return False
        return normalize_project_name(project_name) in self.members


def make_family(name: str, members: Iterable[str], *, default_version: str) -> FrameworkFamily:
    """
    构造框架家族，成员名统一做 PEP 503 规范化。
    """
    return FrameworkFamily(
        name=name,
        members=frozenset(normalize_project_name(m) for m in members),
        default_version=default_version,
    )


BUILTIN_FAMILIES: dict[str, FrameworkFamily] = {
    "django": make_family("django", ["django"], default_version="5.0"),
    "dask": make_family("dask", ["dask", "distributed"], default_version="2024.1"),
}

DEFAULT_FRAMEWORK = "django"


def resolve_framework(
    name: str,
    *,
    members: Iterable[str] | None = None,
    default_version: str | None = None,
) -> FrameworkFamily:
    """
    按名称选择框架家族；提供 members 时构造自定义家族。
    """
    member_list = [m for m in (members or []) if str(m).strip()]
    builtin = BUILTIN_FAMILIES.get(name.lower())

    if member_list:
        fallback = builtin.default_version if builtin else "1.0"
        return make_family(name, member_list, default_version=default_version or fallback)

    if builtin is None:
        raise UnknownFrameworkError(name, sorted(BUILTIN_FAMILIES))

    if default_version:
        return FrameworkFamily(name=builtin.name, members=builtin.members, default_version=default_version)
    return builtin


def parse_framework_version(raw: str) -> Version:
    """
    解析目标框架版本；非法时抛出 MalformedFrameworkVersionError。
    """
    text = (raw or "").strip()
    try:
        return Version(text)
    except InvalidVersion as exc:
        raise MalformedFrameworkVersionError(raw) from exc
