from __future__ import annotations

import asyncio
import base64
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
from packaging.utils import canonicalize_version
from packaging.version import InvalidVersion, Version


@dataclass(frozen=True, slots=True)
class IndexAuth:
    """
    私有索引认证配置。
    """

    bearer_token: str | None = None
    basic_username: str | None = None
    basic_password: str | None = None


@dataclass(frozen=True, slots=True)
class IndexSettings:
    """
    包索引查询配置。
    """

    index_url: str
    extra_index_urls: tuple[str, ...] = ()
    timeout_s: float = 10.0
    retries: int = 2
    include_prereleases: bool = False
    auth: IndexAuth | None = None


@dataclass(frozen=True, slots=True)
class ReleaseLookupResult:
    """
    单个包的查询结果：最新版本及其运行时依赖、各版本发布时间，或错误信息。
    """

    normalized_name: str
    index_url: str | None
    latest: Version | None
    not_found: bool
    error: str | None
    requires_dist: tuple[str, ...] = ()
    release_dates: dict[str, datetime] = field(default_factory=dict)

    def release_date_of(self, version: Version) -> datetime | None:
        """
        返回指定版本的发布时间（未知时为 None）。
        """
        return self.release_dates.get(canonicalize_version(version))


def _build_headers(auth: IndexAuth | None) -> dict[str, str]:
    """
    基于认证配置构造 HTTP Header。
    """
    headers: dict[str, str] = {"Accept": "application/json"}
    if not auth:
        return headers

    if auth.bearer_token:
        headers["Authorization"] = f"Bearer {auth.bearer_token}"
        return headers

    if auth.basic_username is not None and auth.basic_password is not None:
        token = f"{auth.basic_username}:{auth.basic_password}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(token).decode('ascii')}"
        return headers

    return headers


def _candidate_versions_from_pypi_json(data: dict[str, Any]) -> list[Version]:
    """
    从 PyPI JSON API 响应中提取所有可解析的版本列表。
    """
    versions: list[Version] = []
    releases = data.get("releases")
    if isinstance(releases, dict):
        for raw_version in releases.keys():
            try:
                versions.append(Version(str(raw_version)))
            except InvalidVersion:
                continue

    info = data.get("info")
    if isinstance(info, dict) and "version" in info:
        try:
            versions.append(Version(str(info["version"])))
        except InvalidVersion:
            pass

    return versions


def pick_latest_version(data: dict[str, Any], *, include_prereleases: bool) -> Version | None:
    """
    从 PyPI JSON API 响应中选择“最新稳定版本”（默认过滤 pre-release）。
    """
    candidates = _candidate_versions_from_pypi_json(data)
    if not candidates:
        return None

    if include_prereleases:
        return max(candidates)

    stable = [v for v in candidates if not v.is_prerelease and not v.is_devrelease]
    return max(stable) if stable else max(candidates)


def _parse_upload_time(raw: Any) -> datetime | None:
    """
    解析文件上传时间（ISO 8601，缺省时区按 UTC 处理）。
    """
    if not isinstance(raw, str) or not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def release_dates_from_pypi_json(data: dict[str, Any]) -> dict[str, datetime]:
    """
    计算每个版本的发布时间（该版本所有文件中最早的上传时间），键为 canonicalize_version 后的版本号。
    """
    dates: dict[str, datetime] = {}
    releases = data.get("releases")
    if not isinstance(releases, dict):
        return dates

    for raw_version, files in releases.items():
        try:
            key = canonicalize_version(Version(str(raw_version)))
        except InvalidVersion:
            continue
        uploaded = [
            t
            for t in (
                _parse_upload_time(f.get("upload_time_iso_8601") or f.get("upload_time"))
                for f in (files or [])
                if isinstance(f, dict)
            )
            if t is not None
        ]
        if uploaded:
            dates[key] = min(uploaded)
    return dates


def _requires_dist_from_info(data: dict[str, Any] | None) -> tuple[str, ...]:
    """
    读取 info.requires_dist（可能为 null）。
    """
    info = (data or {}).get("info")
    if not isinstance(info, dict):
        return ()
    return tuple(str(r) for r in (info.get("requires_dist") or []))


def _info_version(data: dict[str, Any]) -> Version | None:
    """
    读取 info.version；无法解析时返回 None。
    """
    info = data.get("info")
    if not isinstance(info, dict) or "version" not in info:
        return None
    try:
        return Version(str(info["version"]))
    except InvalidVersion:
        return None


async def _request_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    retries: int,
) -> tuple[dict[str, Any] | None, int | None, str | None]:
    """
    请求 JSON 并返回 (data, status_code, error)。
    """
    attempt = 0
    while True:
        try:
            resp = await client.get(url)
            if resp.status_code == 404:
                return None, 404, None
            if resp.status_code >= 400:
                return None, resp.status_code, f"http {resp.status_code}"
            return resp.json(), resp.status_code, None
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            if attempt >= retries:
                return None, None, str(exc) or type(exc).__name__
            backoff = (2**attempt) * 0.25 + random.random() * 0.25
            attempt += 1
            await asyncio.sleep(backoff)
        except ValueError as exc:
            return None, None, f"invalid json: {exc}"


def _build_pypi_json_url(index_url: str, normalized_name: str, version: Version | None = None) -> str:
    """
    生成 PyPI JSON API 的请求 URL（可指定具体版本）。
    """
    base = index_url.rstrip("/")
    if version is None:
        return f"{base}/{normalized_name}/json"
    return f"{base}/{normalized_name}/{version}/json"


async def _requires_dist_for(
    client: httpx.AsyncClient,
    base: str,
    normalized_name: str,
    data: dict[str, Any],
    latest: Version,
    *,
    retries: int,
) -> tuple[tuple[str, ...] | None, str | None]:
    """
    获取最新版本的 requires_dist：info 对应最新版本时直接使用，否则查询版本专属接口。
    """
    if _info_version(data) == latest:
        return _requires_dist_from_info(data), None

    url = _build_pypi_json_url(base, normalized_name, latest)
    version_data, status, error = await _request_json(client, url, retries=retries)
    if version_data is None:
        return None, error or f"http {status}"
    return _requires_dist_from_info(version_data), None


async def fetch_release_from_indexes(
    normalized_name: str,
    *,
    settings: IndexSettings,
    client: httpx.AsyncClient,
) -> ReleaseLookupResult:
    """
    依次从 index_url 与 extra_index_urls 查询包的最新发布信息。
    """
    urls = (settings.index_url, *settings.extra_index_urls)
    last_error: str | None = None

    for base in urls:
        url = _build_pypi_json_url(base, normalized_name)
        data, status, error = await _request_json(client, url, retries=settings.retries)
        if status == 404:
            continue
        if data is None:
            last_error = error or "request failed"
            continue

        release_dates = release_dates_from_pypi_json(data)
        latest = pick_latest_version(data, include_prereleases=settings.include_prereleases)
        if latest is None:
            return ReleaseLookupResult(
                normalized_name=normalized_name,
                index_url=base,
                latest=None,
                not_found=False,
                error="no version found",
                release_dates=release_dates,
            )

        requires_dist, requires_error = await _requires_dist_for(
            client, base, normalized_name, data, latest, retries=settings.retries
        )
        if requires_dist is None:
            return ReleaseLookupResult(
                normalized_name=normalized_name,
                index_url=base,
                latest=None,
                not_found=False,
                error=f"metadata for {latest} unavailable: {requires_error}",
                release_dates=release_dates,
            )

        return ReleaseLookupResult(
            normalized_name=normalized_name,
            index_url=base,
            latest=latest,
            not_found=False,
            error=None,
            requires_dist=requires_dist,
            release_dates=release_dates,
        )

    return ReleaseLookupResult(
        normalized_name=normalized_name,
        index_url=None,
        latest=None,
        not_found=last_error is None,
        error=last_error,
    )


def create_async_client(settings: IndexSettings) -> httpx.AsyncClient:
    """
    创建用于访问索引的 AsyncClient。
    """
    headers = _build_headers(settings.auth)
    timeout = httpx.Timeout(settings.timeout_s)
    return httpx.AsyncClient(headers=headers, timeout=timeout, follow_redirects=True)
