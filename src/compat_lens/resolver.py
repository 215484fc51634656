from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from compat_lens.cache import CacheDB, CacheEntry, index_scope_key
from compat_lens.index_client import (
    IndexSettings,
    ReleaseLookupResult,
    create_async_client,
    fetch_release_from_indexes,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolveStats:
    """
    版本查询统计信息。
    """

    total: int
    cache_hits: int
    fetched: int


def _result_from_cache(normalized_name: str, entry: CacheEntry) -> ReleaseLookupResult:
    """
    将缓存条目转换为查询结果结构。
    """
    return ReleaseLookupResult(
        normalized_name=normalized_name,
        index_url=entry.resolved_index_url,
        latest=entry.latest,
        not_found=entry.not_found,
        error=None,
        requires_dist=entry.requires_dist,
        release_dates=entry.release_dates,
    )


async def resolve_latest_releases(
    normalized_names: list[str],
    *,
    settings: IndexSettings,
    max_concurrency: int,
    cache: CacheDB | None,
    cache_ttl_s: int,
    refresh: bool,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> tuple[dict[str, ReleaseLookupResult], ResolveStats]:
    """
    并行查询多个包的最新发布信息（每个包名只查询一次），支持全局缓存与增量更新。

    查询出错的结果不写入缓存，下次运行会重新查询。
    """
    scope = index_scope_key(
        settings.index_url, settings.extra_index_urls, include_prereleases=settings.include_prereleases
    )
    results: dict[str, ReleaseLookupResult] = {}

    cache_hits = 0
    to_fetch: list[str] = []
    for name in dict.fromkeys(normalized_names):
        if cache is None or refresh:
            to_fetch.append(name)
            continue

        entry = cache.get(scope=scope, normalized_name=name, ttl_s=cache_ttl_s)
        if entry is None:
            to_fetch.append(name)
            continue

        cache_hits += 1
        results[name] = _result_from_cache(name, entry)

    logger.info("release lookups: %d cached, %d to fetch", cache_hits, len(to_fetch))
    if on_fetch_start is not None:
        on_fetch_start(len(to_fetch))

    sem = asyncio.Semaphore(max(1, max_concurrency))
    async with create_async_client(settings) as client:

        async def worker(n: str) -> None:
            async with sem:
                res = await fetch_release_from_indexes(n, settings=settings, client=client)
                results[n] = res
                if res.error:
                    logger.warning("lookup for %s failed: %s", n, res.error)
                elif cache is not None:
                    cache.set(
                        scope=scope,
                        normalized_name=n,
                        latest=res.latest,
                        resolved_index_url=res.index_url,
                        not_found=res.not_found,
                        requires_dist=res.requires_dist,
                        release_dates=res.release_dates,
                    )
                if on_fetch_complete is not None:
                    on_fetch_complete()

        await asyncio.gather(*(worker(n) for n in to_fetch))

    stats = ResolveStats(total=len(results), cache_hits=cache_hits, fetched=len(to_fetch))
    return results, stats
