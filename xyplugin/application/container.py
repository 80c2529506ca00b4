"""依赖容器模块，负责单例化创建输出写入器与作业执行壳。"""

from __future__ import annotations

from functools import lru_cache

from xyplugin.application.runner import JobRunner
from xyplugin.config import get_settings
from xyplugin.infra.output.writer import OutputWriter


@lru_cache(maxsize=1)
def get_output_writer() -> OutputWriter:
    """获取绑定 stdout 的输出写入器单例。"""
    return OutputWriter()


@lru_cache(maxsize=1)
def get_job_runner() -> JobRunner:
    """获取作业执行壳单例。"""
    return JobRunner(settings=get_settings(), writer=get_output_writer())


def reset_container() -> None:
    """清理依赖容器缓存，确保后续调用可重新构建全新实例。"""
    for provider in (get_job_runner, get_output_writer, get_settings):
        provider.cache_clear()
