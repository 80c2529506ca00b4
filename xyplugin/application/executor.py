"""命令执行策略：进程内 exec 与旧版解释器子进程两种实现。"""

from __future__ import annotations

import builtins
import functools
import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from types import CodeType
from typing import Any

from xyplugin.application.toolkit import PluginToolkit
from xyplugin.config import Settings
from xyplugin.domain.errors import CommandFailedError, LegacyInterpreterUnavailable

logger = logging.getLogger(__name__)

COMMAND_FILENAME = "<command>"
_PACKAGE_ROOT = Path(__file__).resolve().parents[2]

WRAPPER_PRELUDE = """\
import sys as _sys

from xyplugin.application.bootstrap import build_namespace as _build_namespace

globals().update(_build_namespace(_sys.stdin.readline()))
del _sys, _build_namespace
"""


def compile_command(source: str) -> CodeType:
    """编译作业命令；语法错误直接抛出，由调用方按预检失败处理。"""
    try:
        return compile(source, COMMAND_FILENAME, "exec")
    except ValueError as exc:
        # 旧版本解释器对含 NUL 字节的源码抛 ValueError。
        raise SyntaxError(f"command cannot be compiled: {exc}") from exc


def build_script_namespace(toolkit: PluginToolkit, extensions: dict[str, Any]) -> dict[str, Any]:
    namespace: dict[str, Any] = {"__name__": "__xyjob__", "__builtins__": builtins}
    namespace.update(extensions)
    namespace.update(toolkit.namespace())
    namespace["job"] = toolkit.context
    # print 与信封共用输出流并逐行 flush。
    namespace["print"] = functools.partial(print, file=toolkit.writer.stream, flush=True)
    return namespace


class CommandExecutor(ABC):
    """命令执行器抽象，定义统一的执行入口。"""
    name: str

    @abstractmethod
    def execute(self, code: CodeType, source: str, toolkit: PluginToolkit, extensions: dict[str, Any]) -> None:
        """执行已编译的命令；任何异常都交由执行壳的失败边界处理。"""


class InProcessCommandExecutor(CommandExecutor):
    name = "in-process"

    def execute(self, code: CodeType, source: str, toolkit: PluginToolkit, extensions: dict[str, Any]) -> None:
        try:
            exec(code, build_script_namespace(toolkit, extensions))
        except SystemExit as exc:
            # 与子进程路径一致：0 或 None 视为成功，其余按失败处理。
            if exc.code is None or exc.code == 0:
                return
            returncode = exc.code if isinstance(exc.code, int) else 1
            raise CommandFailedError(f"command exited with status {exc.code}", returncode=returncode) from exc


class SubprocessCommandExecutor(CommandExecutor):
    """兼容路径：把引导代码与命令写入临时包装脚本，交给外部解释器执行。"""
    name = "subprocess"

    def __init__(self, settings: Settings, interpreter: str | None = None, platform: str | None = None) -> None:
        self._settings = settings
        self._interpreter = interpreter or settings.legacy_interpreter
        self._platform = platform or sys.platform

    def resolve_interpreter(self) -> str:
        """校验平台与解释器是否可用，返回解释器绝对路径。"""
        if self._platform not in self._settings.legacy_platforms_list():
            raise LegacyInterpreterUnavailable(f"legacy interpreter is not supported on platform {self._platform}")
        resolved = shutil.which(self._interpreter)
        if resolved is None:
            raise LegacyInterpreterUnavailable(f"legacy interpreter not found: {self._interpreter}")
        return resolved

    def execute(self, code: CodeType, source: str, toolkit: PluginToolkit, extensions: dict[str, Any]) -> None:
        interpreter = self.resolve_interpreter()
        ctx = toolkit.context
        workdir = Path(ctx.cwd) if ctx.cwd else Path.cwd()
        with tempfile.TemporaryDirectory(prefix=".xyplugin-", dir=workdir) as tmp:
            tmp_dir = Path(tmp)
            wrapper = tmp_dir / "wrapper.py"
            wrapper.write_text(WRAPPER_PRELUDE + "\n" + source + "\n", encoding="utf-8")
            stdout_path = tmp_dir / "stdout.txt"
            stderr_path = tmp_dir / "stderr.txt"
            logger.info(
                "legacy interpreter started",
                extra={"event": "command.subprocess.started", "payload_preview": {"interpreter": interpreter}},
            )
            with stdout_path.open("w", encoding="utf-8") as out, stderr_path.open("w", encoding="utf-8") as err:
                completed = subprocess.run(
                    [interpreter, str(wrapper)],
                    input=json.dumps(ctx.raw, ensure_ascii=False) + "\n",
                    stdout=out,
                    stderr=err,
                    cwd=str(workdir),
                    env=self._child_env(),
                    text=True,
                    encoding="utf-8",
                    check=False,
                )
            for line in stdout_path.read_text(encoding="utf-8").splitlines():
                toolkit.emit(line)
            for line in stderr_path.read_text(encoding="utf-8").splitlines():
                if line.strip():
                    toolkit.log(line, "error")
        if completed.returncode != 0:
            raise CommandFailedError(
                f"legacy interpreter exited with status {completed.returncode}",
                returncode=completed.returncode,
            )

    @staticmethod
    def _child_env() -> dict[str, str]:
        env = dict(os.environ)
        paths = [str(_PACKAGE_ROOT)]
        if env.get("PYTHONPATH"):
            paths.append(env["PYTHONPATH"])
        env["PYTHONPATH"] = os.pathsep.join(paths)
        env["PYTHONUNBUFFERED"] = "1"
        return env
