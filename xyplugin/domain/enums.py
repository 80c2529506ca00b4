"""领域枚举定义：统一运行状态、日志级别、邮件优先级与终态码取值。"""

from __future__ import annotations

from enum import Enum, IntEnum


class RunState(str, Enum):
    """作业执行壳的生命周期状态。"""
    init = "init"
    setup = "setup"
    running = "running"
    terminated = "terminated"


class LogLevel(str, Enum):
    """log 助手允许的日志级别。"""
    info = "info"
    warning = "warning"
    error = "error"


class Importance(str, Enum):
    """邮件重要性，映射到固定的 X-Priority 头取值。"""
    low = "low"
    normal = "normal"
    high = "high"

    @property
    def priority(self) -> str:
        return {"low": "5", "normal": "3", "high": "1"}[self.value]


class TerminalCode(IntEnum):
    """终态信封中的 code 取值。"""
    success = 0
    interpreter_unavailable = 998
    failed = 999
