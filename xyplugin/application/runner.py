"""作业执行壳：读取输入、准备环境、执行命令并保证唯一终态信封。"""

from __future__ import annotations

import json
import logging
import os
import traceback
from collections.abc import Mapping
from typing import Any, TextIO

from xyplugin.application.executor import (
    COMMAND_FILENAME,
    CommandExecutor,
    InProcessCommandExecutor,
    SubprocessCommandExecutor,
    compile_command,
)
from xyplugin.application.extensions import load_extensions
from xyplugin.application.toolkit import ClientFactory, PluginToolkit, job_flag, lookup_param
from xyplugin.config import Settings
from xyplugin.domain import envelopes
from xyplugin.domain.enums import RunState, TerminalCode
from xyplugin.domain.errors import JobInputError, LegacyInterpreterUnavailable
from xyplugin.domain.models import JobContext
from xyplugin.infra.logging.context import bind_log_context
from xyplugin.infra.output.writer import OutputWriter

logger = logging.getLogger(__name__)

JOB_DATA_TITLE = "xyOps Job Data"


def read_job_context(stream: TextIO) -> JobContext:
    """读取 stdin 的一行 JSON 并构建作业上下文。"""
    line = stream.readline()
    if not line.strip():
        raise JobInputError("expected one line of job JSON on stdin")
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise JobInputError(f"invalid job JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise JobInputError("job JSON must be an object")
    try:
        return JobContext.from_payload(raw)
    except ValueError as exc:
        raise JobInputError(f"invalid job description: {exc}") from exc


def job_data_markdown(ctx: JobContext) -> str:
    return "```json\n" + json.dumps(ctx.raw, ensure_ascii=False, indent=2) + "\n```"


class JobRunner:
    """单次作业的执行壳，状态依次为 init -> setup -> running -> terminated。"""

    def __init__(
        self,
        *,
        settings: Settings,
        writer: OutputWriter,
        client_factory: ClientFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings
        self._writer = writer
        self._client_factory = client_factory
        self._environ = environ if environ is not None else os.environ
        self.state = RunState.init

    def run(self, ctx: JobContext) -> int:
        """执行作业并返回终态 code；命令编译失败属于预检错误，直接抛出。"""
        with bind_log_context(job_id=ctx.job_id):
            self.state = RunState.init
            code = compile_command(ctx.command)
            toolkit = PluginToolkit(
                ctx,
                self._writer,
                self._settings,
                client_factory=self._client_factory,
                environ=self._environ,
            )
            try:
                return self._run(ctx, code, toolkit)
            finally:
                self.state = RunState.terminated
                toolkit.log("Job Finished")

    def _run(self, ctx: JobContext, code: Any, toolkit: PluginToolkit) -> int:
        try:
            self.state = RunState.setup
            extensions = self._setup(ctx, toolkit)
            executor = self._select_executor(ctx)

            self.state = RunState.running
            logger.info(
                "command started",
                extra={"event": "command.started", "payload_preview": {"executor": executor.name}},
            )
            executor.execute(code, ctx.command, toolkit, extensions)
        except LegacyInterpreterUnavailable as exc:
            toolkit.log(str(exc), "error")
            self._writer.emit(envelopes.failure(str(exc), code=TerminalCode.interpreter_unavailable))
            return TerminalCode.interpreter_unavailable
        except Exception as exc:
            logger.error(
                "command failed",
                exc_info=exc,
                extra={"event": "command.failed", "error_type": type(exc).__name__},
            )
            toolkit.log(f"Job failed: {exc}" if str(exc) else "Job failed", "error")
            toolkit.log(_error_detail(exc), "error")
            self._writer.emit(envelopes.failure())
            return TerminalCode.failed
        logger.info("command finished", extra={"event": "command.succeeded"})
        self._writer.emit(envelopes.success())
        return TerminalCode.success

    def _setup(self, ctx: JobContext, toolkit: PluginToolkit) -> dict[str, Any]:
        toolkit.time_tagging = job_flag(ctx, "enableLogTime", self._environ)
        if job_flag(ctx, "passdata", self._environ):
            toolkit.send_data(ctx.input_data())
        if ctx.cwd:
            os.chdir(ctx.cwd)
        if job_flag(ctx, "outputxyops", self._environ):
            toolkit.send_markdown(job_data_markdown(ctx), title=JOB_DATA_TITLE)
        extensions = load_extensions(
            ctx.files,
            suffix=self._settings.extension_suffix,
            report_error=lambda message: toolkit.log(message, "error"),
        )
        toolkit.log("Job Started")
        return extensions

    def _select_executor(self, ctx: JobContext) -> CommandExecutor:
        if job_flag(ctx, "useLegacyInterpreter", self._environ):
            interpreter = lookup_param(ctx, "legacyInterpreter", None, self._environ)
            return SubprocessCommandExecutor(self._settings, interpreter=interpreter or None)
        return InProcessCommandExecutor()


def _error_detail(exc: BaseException) -> str:
    """概括异常类型与用户命令中出错的行号。"""
    frames = [
        frame
        for item in (exc, exc.__cause__)
        if item is not None
        for frame in traceback.extract_tb(item.__traceback__)
        if frame.filename == COMMAND_FILENAME
    ]
    if frames:
        return f"{type(exc).__name__} at {COMMAND_FILENAME} line {frames[-1].lineno}"
    return f"{type(exc).__name__}: {exc!r}"
