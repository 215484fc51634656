from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib

from compat_lens.errors import InvalidConfigError
from compat_lens.framework import BUILTIN_FAMILIES, DEFAULT_FRAMEWORK, FrameworkFamily, resolve_framework
from compat_lens.index_client import IndexAuth, IndexSettings


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    compat-lens 的运行配置（可来自配置文件、环境变量与 CLI 参数合并）。
    """

    index: IndexSettings
    max_concurrency: int = 20
    cache_ttl_s: int = 24 * 60 * 60
    use_cache: bool = True
    refresh: bool = False
    exclude: tuple[str, ...] = ()
    framework: FrameworkFamily = field(default_factory=lambda: BUILTIN_FAMILIES[DEFAULT_FRAMEWORK])
    framework_version: str | None = None
    paths: tuple[str, ...] = ()

    @property
    def effective_framework_version(self) -> str:
        """
        未显式指定目标版本时使用框架家族的默认版本。
        """
        if self.framework_version is not None:
            return self.framework_version
        return self.framework.default_version


def _find_default_config_file(cwd: Path) -> Path | None:
    """
    在当前目录查找默认配置文件路径。
    """
    candidates = [
        ".compat-lens.toml",
        ".compat-lens.yaml",
        ".compat-lens.yml",
        "compat-lens.toml",
        "compat-lens.yaml",
        "compat-lens.yml",
    ]
    for name in candidates:
        p = cwd / name
        if p.exists() and p.is_file():
            return p
    return None


def _load_yaml(path: Path) -> dict[str, Any]:
    """
    读取 YAML 配置文件（需要 PyYAML）。
    """
    import yaml

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _load_config_file(path: Path) -> dict[str, Any]:
    """
    读取 .toml 或 .yaml 配置文件，返回配置字典。
    """
    suffix = path.suffix.lower()
    if suffix == ".toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}
    if suffix in {".yaml", ".yml"}:
        return _load_yaml(path)
    return {}


def _env_list(key: str) -> list[str]:
    """
    从环境变量读取列表（逗号分隔）。
    """
    value = os.environ.get(key)
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _number_option(tool_cfg: dict[str, Any], key: str, default: float, cast: type) -> Any:
    """
    读取数值配置项；无法转换时抛出 InvalidConfigError。
    """
    value = tool_cfg.get(key) or default
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise InvalidConfigError(key, value) from exc


def load_config(config_path: str | None) -> AppConfig:
    """
    从配置文件与环境变量加载 AppConfig（环境变量优先）。
    """
    config_data: dict[str, Any] = {}
    if config_path:
        config_data = _load_config_file(Path(config_path))
    else:
        default = _find_default_config_file(Path.cwd())
        if default:
            config_data = _load_config_file(default)

    tool_cfg = config_data.get("compat_lens") if isinstance(config_data, dict) else {}
    if not isinstance(tool_cfg, dict):
        tool_cfg = {}

    index_url = (
        os.environ.get("COMPAT_LENS_INDEX_URL")
        or str(tool_cfg.get("index_url") or "")
        or "https://pypi.org/pypi"
    )
    extra_index_urls = tuple(
        _env_list("COMPAT_LENS_EXTRA_INDEX_URLS") or list(tool_cfg.get("extra_index_urls") or [])
    )

    bearer = os.environ.get("COMPAT_LENS_BEARER_TOKEN") or str(tool_cfg.get("bearer_token") or "") or None
    basic_user = os.environ.get("COMPAT_LENS_BASIC_USERNAME") or str(tool_cfg.get("basic_username") or "") or None
    basic_pass = os.environ.get("COMPAT_LENS_BASIC_PASSWORD") or str(tool_cfg.get("basic_password") or "") or None
    auth = None
    if bearer or (basic_user is not None and basic_pass is not None):
        auth = IndexAuth(bearer_token=bearer, basic_username=basic_user, basic_password=basic_pass)

    settings = IndexSettings(
        index_url=index_url,
        extra_index_urls=extra_index_urls,
        timeout_s=_number_option(tool_cfg, "timeout_s", 10.0, float),
        retries=_number_option(tool_cfg, "retries", 2, int),
        include_prereleases=bool(tool_cfg.get("include_prereleases") or False),
        auth=auth,
    )

    framework_name = os.environ.get("COMPAT_LENS_FRAMEWORK") or str(tool_cfg.get("framework") or DEFAULT_FRAMEWORK)
    framework = resolve_framework(
        framework_name,
        members=[str(m) for m in (tool_cfg.get("framework_members") or [])],
    )
    framework_version = (
        os.environ.get("COMPAT_LENS_FRAMEWORK_VERSION") or str(tool_cfg.get("framework_version") or "") or None
    )

    return AppConfig(
        index=settings,
        max_concurrency=_number_option(tool_cfg, "max_concurrency", 20, int),
        cache_ttl_s=_number_option(tool_cfg, "cache_ttl_s", 24 * 60 * 60, int),
        use_cache=bool(tool_cfg.get("use_cache") if "use_cache" in tool_cfg else True),
        refresh=bool(tool_cfg.get("refresh") or False),
        exclude=tuple(str(n) for n in (tool_cfg.get("exclude") or [])),
        framework=framework,
        framework_version=framework_version,
        paths=tuple(str(p) for p in (tool_cfg.get("paths") or [])),
    )
