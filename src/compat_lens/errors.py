from __future__ import annotations


class CompatLensError(Exception):
    """
    compat-lens 的基础异常（CLI 捕获后输出一行错误并返回 1）。
    """


class MalformedFrameworkVersionError(CompatLensError, ValueError):
    """
    目标框架版本无法按 PEP 440 解析。
    """

    def __init__(self, raw: str) -> None:
        self.raw = raw
        super().__init__(f"无法解析的框架版本：{raw!r}")


class UnknownFrameworkError(CompatLensError, ValueError):
    """
    未知的框架家族名称（且未配置自定义成员）。
    """

    def __init__(self, name: str, known: list[str]) -> None:
        self.name = name
        self.known = known
        super().__init__(f"未知的框架：{name!r}（可选：{', '.join(known)}）")


class InvalidConfigError(CompatLensError, ValueError):
    """
    配置项的值无法转换为所需类型。
    """

    def __init__(self, key: str, value: object) -> None:
        self.key = key
        self.value = value
        super().__init__(f"配置项 {key} 的值无效：{value!r}")


class EmptyDependencySetError(CompatLensError):
    """
    环境中没有任何已安装的依赖，无法计算过期比例。
    """

    def __init__(self) -> None:
        super().__init__("未找到任何已安装的依赖，无法计算过期比例")
