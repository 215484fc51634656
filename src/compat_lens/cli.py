from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, NoReturn

from rich.console import Console
from rich.logging import RichHandler

from compat_lens.config import AppConfig, load_config
from compat_lens.errors import CompatLensError
from compat_lens.framework import BUILTIN_FAMILIES, parse_framework_version, resolve_framework
from compat_lens.index_client import IndexAuth, IndexSettings

logger = logging.getLogger(__name__)

_FORMATS = ["table", "json", "md"]


class _ArgumentParser(argparse.ArgumentParser):
    """
    参数错误时把用法输出到 stderr 并以 1 退出。
    """

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: 错误：{message}\n")


def _add_report_options(parser: argparse.ArgumentParser, *, compatibility: bool, suppress: bool) -> None:
    """
    添加报告相关参数；子命令上使用 SUPPRESS，避免覆盖子命令前已给出的同名参数。
    """
    default = argparse.SUPPRESS if suppress else None
    parser.add_argument("--format", choices=_FORMATS, default=default, help="输出格式（默认 table）")
    parser.add_argument("--output", default=default, help="输出到文件（默认 stdout）")
    if compatibility:
        parser.add_argument(
            "--framework-version",
            default=default,
            help="目标框架版本（默认使用框架家族的默认版本，Django 为 5.0）",
        )
        parser.add_argument(
            "--include-framework-packages",
            action="store_true",
            default=argparse.SUPPRESS if suppress else False,
            help="同时检查框架家族自身的成员包",
        )


def build_parser() -> argparse.ArgumentParser:
    """
    构建 compat-lens 的命令行参数解析器。
    """
    parser = _ArgumentParser(prog="compat-lens")
    parser.add_argument("--version", action="store_true", help="输出版本号并退出")
    parser.add_argument("--config", help="配置文件路径（.toml 或 .yaml）")
    parser.add_argument(
        "--path",
        action="append",
        default=[],
        help="要扫描的 site-packages 目录（可重复，默认 sys.path）",
    )
    parser.add_argument("--index-url", help="主索引 URL（PyPI JSON API 基址）")
    parser.add_argument("--extra-index-url", action="append", default=[], help="额外索引 URL（可重复）")
    parser.add_argument("--bearer-token", help="私有索引 Bearer Token（谨慎使用）")
    parser.add_argument("--basic-username", help="私有索引 Basic 用户名（谨慎使用）")
    parser.add_argument("--basic-password", help="私有索引 Basic 密码（谨慎使用）")
    parser.add_argument("--exclude", action="append", default=[], help="排除不检查的包名（可重复）")
    parser.add_argument("--no-cache", action="store_true", help="禁用本地缓存")
    parser.add_argument("--refresh", action="store_true", help="忽略缓存并强制重新查询")
    parser.add_argument("--cache-ttl", type=int, help="缓存 TTL 秒数（0 表示永不过期）")
    parser.add_argument("--max-concurrency", type=int, help="最大并发请求数")
    parser.add_argument("--include-prereleases", action="store_true", help="最新版本包含预发布版本")
    parser.add_argument(
        "--framework",
        help=f"框架家族（内置：{', '.join(sorted(BUILTIN_FAMILIES))}）",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="输出更多日志（可重复）")
    _add_report_options(parser, compatibility=True, suppress=False)

    subparsers = parser.add_subparsers(dest="command")

    compatibility = subparsers.add_parser(
        "compatibility",
        help="列出与目标框架版本不兼容的依赖（默认子命令）",
    )
    _add_report_options(compatibility, compatibility=True, suppress=True)

    outdated = subparsers.add_parser("outdated", help="列出落后于最新发布版本的依赖")
    _add_report_options(outdated, compatibility=False, suppress=True)

    return parser


def _merge_cli_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """
    将 CLI 参数覆盖合并到 AppConfig。
    """
    index = cfg.index
    index_url = args.index_url or index.index_url
    extra_index_urls = tuple(args.extra_index_url or index.extra_index_urls)

    auth: IndexAuth | None = index.auth
    if args.bearer_token or args.basic_username or args.basic_password:
        auth = IndexAuth(
            bearer_token=args.bearer_token,
            basic_username=args.basic_username,
            basic_password=args.basic_password,
        )

    index = IndexSettings(
        index_url=index_url,
        extra_index_urls=extra_index_urls,
        timeout_s=index.timeout_s,
        retries=index.retries,
        include_prereleases=index.include_prereleases or bool(args.include_prereleases),
        auth=auth,
    )

    framework = cfg.framework
    if args.framework and args.framework.lower() != framework.name.lower():
        framework = resolve_framework(args.framework)

    return AppConfig(
        index=index,
        max_concurrency=cfg.max_concurrency if args.max_concurrency is None else int(args.max_concurrency),
        cache_ttl_s=cfg.cache_ttl_s if args.cache_ttl is None else int(args.cache_ttl),
        use_cache=cfg.use_cache and not bool(args.no_cache),
        refresh=cfg.refresh or bool(args.refresh),
        exclude=tuple([*cfg.exclude, *(args.exclude or [])]),
        framework=framework,
        framework_version=args.framework_version if args.framework_version is not None else cfg.framework_version,
        paths=tuple(args.path or cfg.paths),
    )


def _configure_logging(verbosity: int) -> None:
    """
    日志输出到 stderr：默认 WARNING，-v 为 INFO，-vv 为 DEBUG。
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _emit(text: str, output_path: str | None) -> None:
    """
    输出渲染结果到文件或 stdout。
    """
    if output_path:
        Path(output_path).write_text(text, encoding="utf-8")
    else:
        print(text, end="" if text.endswith("\n") else "\n")


def _emit_table(printer: Callable[..., None], report: object, output_path: str | None) -> None:
    """
    输出 rich 表格到文件或 stdout。
    """
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            printer(report, file=f)
    else:
        printer(report)


def _fail(message: str) -> int:
    print(f"compat-lens: {message}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    """
    compat-lens 命令行入口。
    """
    args = build_parser().parse_args(argv)

    if args.version:
        from compat_lens import __version__

        print(__version__)
        return 0

    _configure_logging(args.verbose)

    try:
        cfg = _merge_cli_overrides(load_config(args.config), args)
    except (CompatLensError, ValueError) as exc:
        return _fail(str(exc))

    command = args.command or "compatibility"
    fmt = args.format or "table"
    output_path = args.output

    if command == "compatibility":
        from compat_lens.app import run_compatibility
        from compat_lens.formatters import (
            print_compatibility_table,
            render_compatibility_json,
            render_compatibility_markdown,
        )

        try:
            framework_version = parse_framework_version(cfg.effective_framework_version)
        except CompatLensError as exc:
            return _fail(str(exc))

        try:
            report = run_compatibility(
                config=cfg,
                framework_version=framework_version,
                include_framework_packages=bool(args.include_framework_packages),
            )
        except Exception as exc:
            logger.debug("compatibility check failed", exc_info=True)
            return _fail(f"兼容性检查失败：{exc}")

        if fmt == "table":
            _emit_table(print_compatibility_table, report, output_path)
        elif fmt == "json":
            _emit(render_compatibility_json(report), output_path)
        else:
            _emit(render_compatibility_markdown(report), output_path)
        return 0

    if command == "outdated":
        from compat_lens.app import run_outdated
        from compat_lens.formatters import print_outdated_table, render_outdated_json, render_outdated_markdown

        try:
            report = run_outdated(config=cfg)
        except Exception as exc:
            logger.debug("outdated check failed", exc_info=True)
            return _fail(f"过期检查失败：{exc}")

        if fmt == "table":
            _emit_table(print_outdated_table, report, output_path)
        elif fmt == "json":
            _emit(render_outdated_json(report), output_path)
        else:
            _emit(render_outdated_markdown(report), output_path)
        return 0

    return _fail(f"未知子命令 {command!r}")


if __name__ == "__main__":
    raise SystemExit(main())
