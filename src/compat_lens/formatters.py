from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, TextIO

from rich.console import Console
from rich.table import Table

from compat_lens.classifier import release_age, unsatisfied_framework_requirements
from compat_lens.models import FoundDependency, NotFoundDependency
from compat_lens.report import CompatibilityReport, OutdatedReport


def format_age(delta: timedelta | None) -> str:
    """
    将时长格式化为“N 天前/N 个月前/N 年前”。
    """
    if delta is None:
        return "未知"
    days = delta.days
    if days < 1:
        return "今天"
    if days < 30:
        return f"{days} 天前"
    if days < 365:
        return f"{days // 30} 个月前"
    return f"{days // 365} 年前"


def _latest_version_text(entity: FoundDependency) -> str:
    latest = entity.latest_version()
    if isinstance(latest, NotFoundDependency):
        return "-"
    return str(latest.version)


def _unsatisfied_text(entity: FoundDependency | NotFoundDependency, report: CompatibilityReport) -> str:
    reqs = unsatisfied_framework_requirements(entity, report.framework_version, report.family)
    return ", ".join(str(r) for r in reqs) or "-"


def _sections(report: CompatibilityReport) -> list[tuple[str, str, str, list[FoundDependency]]]:
    """
    返回 (分组键, 标题, 说明, 依赖列表)，顺序与报告展示顺序一致。
    """
    target = f"{report.framework} {report.framework_version}"
    return [
        (
            "latest_compatible",
            f"与 {target} 不兼容（已有兼容的新版本）",
            f"升级到 {target} 之前需要先升级这些依赖。",
            report.latest_compatible,
        ),
        (
            "incompatible",
            f"与 {target} 不兼容（新版本仍不兼容）",
            f"升级到 {target} 之前需要移除或替换这些依赖。",
            report.incompatible,
        ),
        (
            "no_new_version",
            f"与 {target} 不兼容（没有新版本）",
            f"升级到 {target} 之前需要自行升级或移除这些依赖（通常是内部包）。",
            report.no_new_version,
        ),
    ]


def compatibility_report_to_json_obj(report: CompatibilityReport) -> dict[str, Any]:
    """
    将兼容性报告转换为可 JSON 序列化的字典结构。
    """
    data: dict[str, Any] = {
        "framework": report.framework,
        "framework_version": str(report.framework_version),
        "incompatible_count": report.incompatible_count,
    }
    for key, _title, _hint, entities in _sections(report):
        items = []
        for entity in entities:
            latest = entity.latest_version()
            unsatisfied = unsatisfied_framework_requirements(entity, report.framework_version, report.family)
            latest_unsatisfied = unsatisfied_framework_requirements(latest, report.framework_version, report.family)
            items.append(
                {
                    "name": entity.name,
                    "version": str(entity.version),
                    "latest_version": None if isinstance(latest, NotFoundDependency) else str(latest.version),
                    "unsatisfied": [str(r) for r in unsatisfied],
                    "latest_unsatisfied": [str(r) for r in latest_unsatisfied],
                }
            )
        data[key] = items
    return data


def outdated_report_to_json_obj(report: OutdatedReport, *, now: datetime | None = None) -> dict[str, Any]:
    """
    将过期报告转换为可 JSON 序列化的字典结构。
    """
    now = now or datetime.now(timezone.utc)
    items = []
    for entity in report.out_of_date:
        latest = entity.latest_version()
        age = release_age(entity, now)
        items.append(
            {
                "name": entity.name,
                "version": str(entity.version),
                "source_origin": entity.source_origin.value,
                "release_date": entity.release_date.isoformat() if entity.release_date else None,
                "age_days": age.days if age is not None else None,
                "latest_version": None if isinstance(latest, NotFoundDependency) else str(latest.version),
                "latest_release_date": (
                    latest.release_date.isoformat()
                    if not isinstance(latest, NotFoundDependency) and latest.release_date
                    else None
                ),
            }
        )
    return {
        "out_of_date": items,
        "outdated_count": report.outdated_count,
        "total": report.total,
        "vcs_count": report.vcs_count,
        "percentage_out_of_date": report.percentage_out_of_date,
    }


def render_compatibility_json(report: CompatibilityReport) -> str:
    return json.dumps(compatibility_report_to_json_obj(report), ensure_ascii=False, indent=2)


def render_outdated_json(report: OutdatedReport, *, now: datetime | None = None) -> str:
    return json.dumps(outdated_report_to_json_obj(report, now=now), ensure_ascii=False, indent=2)


def _compat_summary(report: CompatibilityReport) -> str:
    return f"共 {report.incompatible_count} 个依赖与 {report.framework} {report.framework_version} 不兼容"


def _outdated_summary_lines(report: OutdatedReport) -> list[str]:
    return [
        f"{report.vcs_count} 个依赖直接来自版本控制仓库",
        f"{report.outdated_count}/{report.total} 个依赖已过期（{report.percentage_out_of_date}%）",
    ]


def render_compatibility_markdown(report: CompatibilityReport) -> str:
    """
    渲染兼容性 Markdown 报告（每个非空分组一张表 + 汇总）。
    """
    lines: list[str] = [f"# compat-lens 兼容性报告：{report.framework} {report.framework_version}", ""]
    for _key, title, hint, entities in _sections(report):
        if not entities:
            continue
        lines.append(f"## {title}\n\n{hint}\n")
        lines.append("| 包 | 当前 | 最新 | 未满足的约束 | 最新版本未满足的约束 |")
        lines.append("|---|---|---|---|---|")
        for entity in entities:
            lines.append(
                f"| {entity.name} | {entity.version} | {_latest_version_text(entity)} "
                f"| {_unsatisfied_text(entity, report)} | {_unsatisfied_text(entity.latest_version(), report)} |"
            )
        lines.append("")
    lines.append(_compat_summary(report))
    return "\n".join(lines) + "\n"


def render_outdated_markdown(report: OutdatedReport, *, now: datetime | None = None) -> str:
    """
    渲染过期 Markdown 报告（表格 + 统计）。
    """
    now = now or datetime.now(timezone.utc)
    lines: list[str] = ["# compat-lens 过期报告", ""]
    lines.append("| 包 | 当前 | 来源 | 发布于 | 最新 | 最新发布于 |")
    lines.append("|---|---|---|---|---|---|")
    for entity in report.out_of_date:
        latest = entity.latest_version()
        lines.append(
            f"| {entity.name} | {entity.version} | {entity.source_origin.value} "
            f"| {format_age(release_age(entity, now))} | {_latest_version_text(entity)} "
            f"| {format_age(release_age(latest, now))} |"
        )
    lines.append("")
    lines.extend(f"- {line}" for line in _outdated_summary_lines(report))
    return "\n".join(lines) + "\n"


def print_compatibility_table(report: CompatibilityReport, *, file: TextIO | None = None) -> None:
    """
    以控制台表格形式输出兼容性报告。
    """
    console = Console(file=file)
    for _key, title, hint, entities in _sections(report):
        if not entities:
            continue
        table = Table(title=title, caption=hint)
        table.add_column("包", no_wrap=True)
        table.add_column("当前", no_wrap=True)
        table.add_column("最新", no_wrap=True)
        table.add_column("未满足的约束")
        table.add_column("最新版本未满足的约束")
        for entity in entities:
            table.add_row(
                entity.name,
                str(entity.version),
                _latest_version_text(entity),
                _unsatisfied_text(entity, report),
                _unsatisfied_text(entity.latest_version(), report),
            )
        console.print(table)
    console.print(_compat_summary(report))


def print_outdated_table(report: OutdatedReport, *, now: datetime | None = None, file: TextIO | None = None) -> None:
    """
    以控制台表格形式输出过期报告（最久未更新的在前）。
    """
    now = now or datetime.now(timezone.utc)
    console = Console(file=file)
    table = Table(title="compat-lens 过期依赖")
    table.add_column("包", no_wrap=True)
    table.add_column("当前", no_wrap=True)
    table.add_column("来源", no_wrap=True)
    table.add_column("发布于", no_wrap=True)
    table.add_column("最新", no_wrap=True)
    table.add_column("最新发布于", no_wrap=True)
    for entity in report.out_of_date:
        latest = entity.latest_version()
        table.add_row(
            entity.name,
            str(entity.version),
            "VCS" if entity.sourced_from_vcs else "-",
            format_age(release_age(entity, now)),
            _latest_version_text(entity),
            format_age(release_age(latest, now)),
        )
    console.print(table)
    for line in _outdated_summary_lines(report):
        console.print(line)
