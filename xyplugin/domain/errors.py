"""插件异常层级：区分预检失败与运行期失败。"""

from __future__ import annotations


class PluginError(Exception):
    pass


class JobInputError(PluginError):
    """stdin 上的作业描述无法解析或不符合结构。"""


class UnsupportedPayloadError(PluginError, TypeError):
    """emit 收到无法序列化的值，属于调用方编程错误。"""


class MissingSecretsError(PluginError):
    """作业未分配 secrets，或缺少指定的 secret 变量。"""


class RemoteHelperError(PluginError):
    """宿主 REST 调用失败，消息中保留原始错误细节。"""

    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class LegacyInterpreterUnavailable(PluginError):
    """旧版解释器不存在或当前平台不支持。"""


class CommandFailedError(PluginError):
    """子进程方式执行命令时返回非零退出码。"""

    def __init__(self, message: str, *, returncode: int) -> None:
        super().__init__(message)
        self.returncode = returncode
