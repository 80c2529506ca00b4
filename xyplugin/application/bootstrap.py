"""子进程引导：由包装脚本调用，从 stdin 的作业 JSON 重建助手命名空间。"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from xyplugin.application.executor import build_script_namespace
from xyplugin.application.extensions import load_extensions
from xyplugin.application.toolkit import PluginToolkit, job_flag
from xyplugin.config import get_settings
from xyplugin.domain.models import JobContext
from xyplugin.infra.output.writer import OutputWriter


def _ignore_report(message: str) -> None:
    """父进程已报告过扩展加载失败。"""


def build_namespace(job_line: str) -> dict[str, Any]:
    # 子进程 stderr 会被父进程按错误日志转发，诊断日志在此静默。
    logging.getLogger("xyplugin").addHandler(logging.NullHandler())
    settings = get_settings()
    ctx = JobContext.from_payload(json.loads(job_line))
    writer = OutputWriter(sys.stdout)
    toolkit = PluginToolkit(ctx, writer, settings, time_tagging=job_flag(ctx, "enableLogTime"))
    extensions = load_extensions(ctx.files, suffix=settings.extension_suffix, report_error=_ignore_report)
    namespace = build_script_namespace(toolkit, extensions)
    namespace.pop("__name__")
    return namespace
