from __future__ import annotations

import io
import json
from datetime import datetime, timedelta, timezone

from packaging.requirements import Requirement
from packaging.version import Version

from compat_lens.formatters import (
    compatibility_report_to_json_obj,
    format_age,
    outdated_report_to_json_obj,
    print_compatibility_table,
    print_outdated_table,
    render_compatibility_markdown,
    render_outdated_json,
    render_outdated_markdown,
)
from compat_lens.framework import BUILTIN_FAMILIES
from compat_lens.models import NOT_FOUND, FoundDependency, SourceOrigin
from compat_lens.report import CompatibilityReport, OutdatedReport

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _dep(name: str, version: str, *reqs: str, latest=NOT_FOUND, **kwargs) -> FoundDependency:
    """
    构造带固定最新版本的依赖实体。
    """
    return FoundDependency(
        name=name,
        version=Version(version),
        requirements=tuple(Requirement(r) for r in reqs),
        loader=lambda _name: latest,
        **kwargs,
    )


def _compat_report() -> CompatibilityReport:
    return CompatibilityReport(
        family=BUILTIN_FAMILIES["django"],
        framework_version=Version("5.0"),
        latest_compatible=[_dep("django-filter", "2.0", "Django<4", latest=_dep("django-filter", "24.2", "Django>=4.2"))],
        incompatible=[_dep("old-widget", "1.0", "django<3", latest=_dep("old-widget", "1.1", "django<4"))],
        no_new_version=[_dep("internal-tool", "0.1", "django<4")],
    )


def _outdated_report() -> OutdatedReport:
    return OutdatedReport(
        out_of_date=[
            _dep(
                "requests",
                "2.20.0",
                latest=_dep("requests", "2.32.3", release_date=NOW - timedelta(days=10)),
                release_date=NOW - timedelta(days=800),
            ),
            _dep("internal-tool", "0.1", source_origin=SourceOrigin.VCS),
        ],
        vcs_count=1,
        total=4,
        percentage_out_of_date=50,
    )


def test_format_age() -> None:
    """
    发布时长应格式化为天/月/年。
    """
    assert format_age(None) == "未知"
    assert format_age(timedelta(hours=3)) == "今天"
    assert format_age(timedelta(days=12)) == "12 天前"
    assert format_age(timedelta(days=95)) == "3 个月前"
    assert format_age(timedelta(days=800)) == "2 年前"


def test_compatibility_json_contains_buckets_and_unsatisfied_requirements() -> None:
    """
    兼容性 JSON 应包含各分组、最新版本与未满足的约束。
    """
    obj = compatibility_report_to_json_obj(_compat_report())
    json.dumps(obj)
    assert obj["framework"] == "django"
    assert obj["framework_version"] == "5.0"
    assert obj["incompatible_count"] == 3
    fixable = obj["latest_compatible"][0]
    assert fixable["latest_version"] == "24.2"
    assert fixable["unsatisfied"] == ["Django<4"]
    assert fixable["latest_unsatisfied"] == []
    assert obj["incompatible"][0]["latest_unsatisfied"] == ["django<4"]
    assert obj["no_new_version"][0]["latest_version"] is None


def test_outdated_json_contains_stats() -> None:
    """
    过期 JSON 应包含统计信息与版本、来源、发布时长。
    """
    obj = outdated_report_to_json_obj(_outdated_report(), now=NOW)
    assert obj["percentage_out_of_date"] == 50
    assert obj["vcs_count"] == 1
    assert obj["outdated_count"] == 2
    first, second = obj["out_of_date"]
    assert first["age_days"] == 800
    assert first["latest_version"] == "2.32.3"
    assert second["source_origin"] == "vcs"
    assert second["release_date"] is None
    assert json.loads(render_outdated_json(_outdated_report(), now=NOW)) == obj


def test_render_markdown_reports() -> None:
    """
    Markdown 渲染应包含分组标题、表格行与汇总。
    """
    md = render_compatibility_markdown(_compat_report())
    assert "## 与 django 5.0 不兼容（已有兼容的新版本）" in md
    assert "| django-filter | 2.0 | 24.2 | Django<4 | - |" in md
    assert "| internal-tool | 0.1 | - | django<4 | - |" in md
    assert md.rstrip().endswith("共 3 个依赖与 django 5.0 不兼容")

    out_md = render_outdated_markdown(_outdated_report(), now=NOW)
    assert "| requests | 2.20.0 | registry | 2 年前 | 2.32.3 | 10 天前 |" in out_md
    assert "- 2/4 个依赖已过期（50%）" in out_md
    assert "- 1 个依赖直接来自版本控制仓库" in out_md


def test_print_tables_write_to_file() -> None:
    """
    rich 表格输出应写入指定文件对象。
    """
    buf = io.StringIO()
    print_compatibility_table(_compat_report(), file=buf)
    text = buf.getvalue()
    assert "django-filter" in text
    assert "共 3 个依赖与 django 5.0 不兼容" in text

    buf = io.StringIO()
    print_outdated_table(_outdated_report(), now=NOW, file=buf)
    text = buf.getvalue()
    assert "requests" in text
    assert "2/4 个依赖已过期（50%）" in text
