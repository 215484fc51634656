from __future__ import annotations

import base64
import json
from datetime import datetime, timezone

import httpx
import pytest
from packaging.version import Version

from compat_lens.index_client import (
    IndexAuth,
    IndexSettings,
    fetch_release_from_indexes,
    pick_latest_version,
    release_dates_from_pypi_json,
)


def _json_response(payload: dict) -> httpx.Response:
    return httpx.Response(200, text=json.dumps(payload), headers={"Content-Type": "application/json"})


def _project_payload(*, info_version: str = "2.0.0", requires_dist: list[str] | None = None) -> dict:
    """
    构造一个 PyPI JSON API 风格的项目响应。
    """
    return {
        "info": {"version": info_version, "requires_dist": requires_dist},
        "releases": {
            "1.0.0": [
                {"upload_time_iso_8601": "2020-01-02T10:00:00.000000Z"},
                {"upload_time_iso_8601": "2020-01-01T08:30:00.000000Z"},
            ],
            "2.0.0": [{"upload_time_iso_8601": "2023-05-06T00:00:00Z"}],
            "3.0.0rc1": [{"upload_time": "2024-02-01T00:00:00"}],
            "4.0.0": [],
        },
    }


def test_build_headers_accept_and_auth_variants() -> None:
    """
    认证 header 构造应支持无认证/bearer/basic 三种情况，并始终带 Accept。
    """
    from compat_lens import index_client

    assert index_client._build_headers(None) == {"Accept": "application/json"}

    bearer = index_client._build_headers(IndexAuth(bearer_token="t"))
    assert bearer["Authorization"] == "Bearer t"

    basic = index_client._build_headers(IndexAuth(basic_username="u", basic_password="p"))
    token = base64.b64encode(b"u:p").decode("ascii")
    assert basic["Accept"] == "application/json"
    assert basic["Authorization"] == f"Basic {token}"


def test_pick_latest_filters_prerelease_by_default() -> None:
    """
    默认应过滤预发布版本；仅有预发布版本时返回最大的预发布版本；非法版本被跳过。
    """
    data = {"releases": {"1.0.0": [], "2.0.0rc1": [], "bad!!!": []}, "info": {"version": "2.0.0rc1"}}
    assert pick_latest_version(data, include_prereleases=False) == Version("1.0.0")
    assert pick_latest_version(data, include_prereleases=True) == Version("2.0.0rc1")

    only_pre = {"releases": {"1.0.0rc1": [], "1.0.0rc2": []}}
    assert pick_latest_version(only_pre, include_prereleases=False) == Version("1.0.0rc2")
    assert pick_latest_version({}, include_prereleases=False) is None


def test_release_dates_use_earliest_upload_per_version() -> None:
    """
    每个版本的发布时间取其文件中最早的上传时间；无文件的版本没有发布时间。
    """
    dates = release_dates_from_pypi_json(_project_payload())
    assert dates["1"] == datetime(2020, 1, 1, 8, 30, tzinfo=timezone.utc)
    assert dates["2"] == datetime(2023, 5, 6, tzinfo=timezone.utc)
    assert dates["3rc1"] == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert "4" not in dates


@pytest.mark.asyncio
async def test_fetch_release_uses_info_requires_dist_when_info_is_latest() -> None:
    """
    info.version 即最新版本时，直接使用 info.requires_dist，不再请求版本专属接口。
    """
    payload = _project_payload(info_version="4.0.0", requires_dist=["django>=4.2", "requests"])
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return _json_response(payload)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        res = await fetch_release_from_indexes(
            "demo", settings=IndexSettings(index_url="https://primary.test/pypi"), client=client
        )

    assert seen == ["/pypi/demo/json"]
    assert res.latest == Version("4.0.0")
    assert res.requires_dist == ("django>=4.2", "requests")
    assert res.error is None
    assert res.release_date_of(Version("1.0")) == datetime(2020, 1, 1, 8, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_fetch_release_queries_version_endpoint_when_info_differs() -> None:
    """
    info.version 不是选中的最新版本时，应从 /{name}/{version}/json 读取 requires_dist。
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/pypi/demo/json":
            return _json_response(_project_payload(info_version="3.0.0rc1", requires_dist=["django>=6"]))
        assert request.url.path == "/pypi/demo/4.0.0/json"
        return _json_response({"info": {"version": "4.0.0", "requires_dist": ["django>=5"]}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        res = await fetch_release_from_indexes(
            "demo", settings=IndexSettings(index_url="https://primary.test/pypi"), client=client
        )

    assert res.latest == Version("4.0.0")
    assert res.requires_dist == ("django>=5",)


@pytest.mark.asyncio
async def test_fetch_release_fallback_to_extra_index() -> None:
    """
    主索引 404 时，应回退到 extra index 并成功解析最新版本。
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "primary.test":
            return httpx.Response(404, text="not found")
        return _json_response({"releases": {"1.2.3": []}, "info": {"version": "1.2.3", "requires_dist": None}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        settings = IndexSettings(index_url="https://primary.test/pypi", extra_index_urls=("https://extra.test/pypi",))
        res = await fetch_release_from_indexes("demo", settings=settings, client=client)

    assert res.latest == Version("1.2.3")
    assert res.index_url == "https://extra.test/pypi"
    assert res.requires_dist == ()


@pytest.mark.asyncio
async def test_fetch_release_not_found_and_errors() -> None:
    """
    所有索引都 404 时为 not_found；HTTP 错误时 not_found=False 且带错误信息。
    """
    missing = httpx.MockTransport(lambda _req: httpx.Response(404, text="not found"))
    async with httpx.AsyncClient(transport=missing) as client:
        res = await fetch_release_from_indexes(
            "demo", settings=IndexSettings(index_url="https://x.test/pypi"), client=client
        )
    assert res.not_found is True
    assert res.latest is None
    assert res.error is None

    broken = httpx.MockTransport(lambda _req: httpx.Response(500, text="boom"))
    async with httpx.AsyncClient(transport=broken) as client:
        res = await fetch_release_from_indexes(
            "demo", settings=IndexSettings(index_url="https://x.test/pypi", retries=0), client=client
        )
    assert res.not_found is False
    assert res.error == "http 500"


@pytest.mark.asyncio
async def test_request_json_invalid_json_returns_error() -> None:
    """
    JSON 解析失败时应返回 invalid json 错误信息。
    """
    from compat_lens.index_client import _request_json

    transport = httpx.MockTransport(
        lambda _req: httpx.Response(200, text="not json", headers={"Content-Type": "application/json"})
    )
    async with httpx.AsyncClient(transport=transport) as client:
        data, status, error = await _request_json(client, "https://x.test/pypi/demo/json", retries=0)
    assert data is None
    assert status is None
    assert error is not None
    assert error.startswith("invalid json:")


@pytest.mark.asyncio
async def test_request_json_retries_on_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    超时/网络错误应按 retries 重试，并在成功后返回数据。
    """
    from compat_lens.index_client import _request_json

    async def fake_sleep(_s: float) -> None:
        """
        避免真实 sleep，让重试测试更快更稳定。
        """
        return None

    monkeypatch.setattr("compat_lens.index_client.asyncio.sleep", fake_sleep)
    monkeypatch.setattr("compat_lens.index_client.random.random", lambda: 0.0)

    calls = {"n": 0}

    def handler(_req: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.TimeoutException("timeout")
        return _json_response({"releases": {"1.2.3": []}, "info": {"version": "1.2.3"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        data, status, error = await _request_json(client, "https://x.test/pypi/demo/json", retries=2)

    assert calls["n"] == 2
    assert error is None
    assert status == 200
    assert data is not None
    assert data["info"]["version"] == "1.2.3"
