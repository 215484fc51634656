from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from packaging.version import Version
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from compat_lens.cache import CacheDB, default_cache_path
from compat_lens.classifier import compatibility_report, outdated_report
from compat_lens.config import AppConfig
from compat_lens.environment import scan_installed
from compat_lens.framework import normalize_project_name
from compat_lens.index import SnapshotIndex
from compat_lens.report import CompatibilityReport, OutdatedReport
from compat_lens.resolver import resolve_latest_releases

logger = logging.getLogger(__name__)


async def build_index(
    *,
    config: AppConfig,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> SnapshotIndex:
    """
    扫描已安装的依赖并查询其最新发布信息，生成只读快照索引。
    """
    installed = scan_installed(config.paths or None, exclude=config.exclude)
    names = [normalize_project_name(d.name) for d in installed]

    cache_db: CacheDB | None = None
    if config.use_cache:
        cache_db = CacheDB(default_cache_path())

    try:
        lookups, stats = await resolve_latest_releases(
            names,
            settings=config.index,
            max_concurrency=config.max_concurrency,
            cache=cache_db,
            cache_ttl_s=config.cache_ttl_s,
            refresh=config.refresh,
            on_fetch_start=on_fetch_start,
            on_fetch_complete=on_fetch_complete,
        )
    finally:
        if cache_db is not None:
            cache_db.close()

    logger.debug("resolved %d packages (%d from cache)", stats.total, stats.cache_hits)
    return SnapshotIndex(installed, lookups)


def load_index(*, config: AppConfig) -> SnapshotIndex:
    """
    同步入口：构建快照索引（内部使用 asyncio，并在 stderr 显示查询进度）。
    """
    console = Console(stderr=True)
    state: dict[str, Any] = {"progress": None, "task_id": None}

    def on_start(total: int) -> None:
        if total > 0:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                "({task.completed}/{task.total})",
                console=console,
                transient=True,
            )
            progress.start()
            state["progress"] = progress
            state["task_id"] = progress.add_task("查询包索引...", total=total)

    def on_complete() -> None:
        progress = state["progress"]
        task_id = state["task_id"]
        if progress and task_id is not None:
            progress.advance(task_id)

    try:
        return asyncio.run(build_index(config=config, on_fetch_start=on_start, on_fetch_complete=on_complete))
    finally:
        if state["progress"]:
            state["progress"].stop()


def run_compatibility(
    *,
    config: AppConfig,
    framework_version: Version,
    include_framework_packages: bool,
) -> CompatibilityReport:
    """
    生成兼容性报告。
    """
    index = load_index(config=config)
    return compatibility_report(
        index,
        framework_version,
        config.framework,
        include_framework_packages=include_framework_packages,
    )


def run_outdated(*, config: AppConfig) -> OutdatedReport:
    """
    生成过期报告。
    """
    return outdated_report(load_index(config=config))
