"""插件助手库：绑定作业上下文的信封发送、参数读取与宿主 REST 封装。"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from xyplugin.config import Settings, parse_bool
from xyplugin.domain import envelopes
from xyplugin.domain.enums import Importance, LogLevel
from xyplugin.domain.errors import MissingSecretsError, RemoteHelperError
from xyplugin.domain.models import JobContext
from xyplugin.infra.logging.context import bind_log_context
from xyplugin.infra.output.writer import OutputWriter
from xyplugin.infra.xyops.client import XyOpsClient, XyOpsCredentials

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, XyOpsCredentials, Settings], XyOpsClient]

# 暴露给用户脚本的助手名称。
EXPORTED_HELPERS = (
    "emit",
    "log",
    "send_progress",
    "send_status",
    "send_label",
    "send_data",
    "send_file",
    "send_perf",
    "send_table",
    "send_html",
    "send_text",
    "send_markdown",
    "get_input_files",
    "get_param",
    "get_bucket_file",
    "put_bucket_file",
    "delete_bucket_file",
    "get_bucket_data",
    "put_bucket_data",
    "get_cache",
    "set_cache",
    "get_tags",
    "send_tags",
    "send_email",
)


class PluginToolkit:
    """作业助手集合；所有状态来自构造参数，不依赖进程级全局变量。"""

    def __init__(
        self,
        ctx: JobContext,
        writer: OutputWriter,
        settings: Settings,
        *,
        time_tagging: bool = False,
        client_factory: ClientFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._ctx = ctx
        self._writer = writer
        self._settings = settings
        self._time_tagging = time_tagging
        self._client_factory = client_factory or XyOpsClient
        self._environ = environ if environ is not None else os.environ

    @property
    def context(self) -> JobContext:
        return self._ctx

    @property
    def writer(self) -> OutputWriter:
        return self._writer

    @property
    def time_tagging(self) -> bool:
        return self._time_tagging

    @time_tagging.setter
    def time_tagging(self, enabled: bool) -> None:
        self._time_tagging = enabled

    def namespace(self) -> dict[str, Any]:
        """构建用户脚本可见的助手命名空间。"""
        return {name: getattr(self, name) for name in EXPORTED_HELPERS}

    # -- output ---------------------------------------------------------

    def emit(self, value: Any) -> None:
        self._writer.emit(value)

    def log(self, message: str, level: str = "info") -> None:
        """写出带级别前缀的日志行；开启时间标记时附加时间戳。"""
        try:
            tag = LogLevel(str(level).lower()).value.upper()
        except ValueError as exc:
            raise ValueError(f"invalid log level: {level!r} (expected info, warning or error)") from exc
        if self._time_tagging:
            stamp = datetime.now().strftime(self._settings.log_time_format)
            self._writer.emit(f"[{stamp}] [{tag}] {message}")
        else:
            self._writer.emit(f"[{tag}] {message}")

    def send_progress(self, percent: float, status: str | None = None) -> None:
        self._writer.emit(envelopes.progress(percent, status))

    def send_status(self, text: str) -> None:
        self._writer.emit(envelopes.status(text))

    def send_label(self, text: str) -> None:
        self._writer.emit(envelopes.label(text))

    def send_data(self, value: Any) -> None:
        self._writer.emit(envelopes.data(value))

    def send_file(self, path: str | Path) -> None:
        self._writer.emit(envelopes.file(str(path)))

    def send_perf(self, metrics: Mapping[str, float], scale: float | None = None) -> None:
        self._writer.emit(envelopes.perf(metrics, scale))

    def send_table(
        self,
        rows: Sequence[Sequence[Any]],
        header: Sequence[str] | None = None,
        title: str | None = None,
        caption: str | None = None,
    ) -> None:
        self._writer.emit(envelopes.table(rows, header=header, title=title, caption=caption))

    def send_html(self, content: str, title: str | None = None, caption: str | None = None) -> None:
        self._writer.emit(envelopes.content_panel("html", content, title, caption))

    def send_text(self, content: str, title: str | None = None, caption: str | None = None) -> None:
        self._writer.emit(envelopes.content_panel("text", content, title, caption))

    def send_markdown(self, content: str, title: str | None = None, caption: str | None = None) -> None:
        self._writer.emit(envelopes.content_panel("markdown", content, title, caption))

    # -- input ----------------------------------------------------------

    def get_input_files(self) -> list[dict[str, Any]]:
        """返回 input.files；没有输入文件时返回空列表。"""
        raw_input = self._ctx.raw.get("input")
        if not isinstance(raw_input, dict):
            return []
        return list(raw_input.get("files") or [])

    def get_param(self, name: str | None = None, default: Any = None) -> Any:
        """按 环境变量 > 作业参数 > 默认值 的顺序取参数；不传 name 时输出全部参数清单。"""
        if name is None:
            return self._list_params()
        return lookup_param(self._ctx, name, default, self._environ)

    def _list_params(self) -> list[tuple[str, str, str]]:
        rows = [("Environment", key, str(value)) for key, value in sorted(self._environ.items())]
        rows.extend(("Parameter", key, str(value)) for key, value in sorted(self._ctx.params.items()))
        header = ("Source", "Name", "Value")
        widths = [max(len(row[i]) for row in [header, *rows]) for i in range(len(header))]
        for row in [header, tuple("-" * width for width in widths), *rows]:
            self._writer.emit("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
        return rows

    # -- remote ---------------------------------------------------------

    def _secret(self, var_name: str) -> str:
        if not self._ctx.secrets:
            raise MissingSecretsError("no secrets assigned")
        value = self._ctx.secrets.get(var_name)
        if value in (None, ""):
            raise MissingSecretsError(f"secret variable not assigned: {var_name}")
        return str(value)

    def _client(self, api_key_var: str | None = None) -> XyOpsClient:
        api_key = self._secret(api_key_var or self._settings.api_key_secret)
        return self._client_factory(self._ctx.base_url, XyOpsCredentials(api_key=api_key), self._settings)

    def get_bucket_data(self, bucket_id: str, *, api_key_var: str | None = None) -> Any:
        client = self._client(api_key_var)
        try:
            with bind_log_context(op="bucket.get"):
                return client.get_bucket(bucket_id).get("data")
        finally:
            client.close()

    def put_bucket_data(self, bucket_id: str, data: Any, *, api_key_var: str | None = None) -> None:
        client = self._client(api_key_var)
        try:
            with bind_log_context(op="bucket.write_data"):
                client.write_bucket_data(bucket_id, data)
        finally:
            client.close()

    def get_bucket_file(
        self,
        bucket_id: str,
        filename: str,
        destination: str | Path | None = None,
        *,
        api_key_var: str | None = None,
    ) -> Path:
        """下载 bucket 中的文件：先取文件清单，再拉取内容写入本地。"""
        client = self._client(api_key_var)
        try:
            with bind_log_context(op="bucket.download_file"):
                bucket = client.get_bucket(bucket_id)
                match = next(
                    (item for item in bucket.get("files") or [] if item.get("filename") == filename),
                    None,
                )
                if match is None or not match.get("path"):
                    raise RemoteHelperError(f"file not found in bucket {bucket_id}: {filename}")
                content = client.download(str(match["path"]))
        finally:
            client.close()
        target = Path(destination) if destination is not None else Path.cwd() / filename
        if target.is_dir():
            target = target / filename
        target.write_bytes(content)
        logger.info(
            "bucket file downloaded",
            extra={"event": "bucket.file.downloaded", "payload_preview": {"bucket": bucket_id, "file": filename}},
        )
        return target

    def put_bucket_file(self, bucket_id: str, path: str | Path, *, api_key_var: str | None = None) -> None:
        source = Path(path)
        if not source.is_file():
            raise FileNotFoundError(f"file to upload not found: {source}")
        client = self._client(api_key_var)
        try:
            with bind_log_context(op="bucket.upload_file"):
                client.upload_bucket_file(bucket_id, source)
        finally:
            client.close()

    def delete_bucket_file(self, bucket_id: str, filename: str, *, api_key_var: str | None = None) -> None:
        client = self._client(api_key_var)
        try:
            with bind_log_context(op="bucket.delete_file"):
                client.delete_bucket_file(bucket_id, filename)
        finally:
            client.close()

    def _cache_bucket(self, cache_bucket_var: str | None) -> str:
        return self._secret(cache_bucket_var or self._settings.cache_bucket_secret)

    def get_cache(self, key: str | None = None, default: Any = None, *, cache_bucket_var: str | None = None) -> Any:
        """读取缓存 bucket 的 JSON 映射；传 key 时只返回该项。"""
        store = self.get_bucket_data(self._cache_bucket(cache_bucket_var))
        if not isinstance(store, dict):
            store = {}
        if key is None:
            return store
        return store.get(key, default)

    def set_cache(self, key: str, value: Any, *, cache_bucket_var: str | None = None) -> None:
        """读-改-写缓存 bucket 中的单个键；无 TTL 与淘汰。"""
        bucket_id = self._cache_bucket(cache_bucket_var)
        store = self.get_bucket_data(bucket_id)
        if not isinstance(store, dict):
            store = {}
        store[key] = value
        self.put_bucket_data(bucket_id, store)

    def get_tags(self, title: str | None = None, tag_id: str | None = None) -> list[dict[str, Any]]:
        """获取标签目录，可按 title 或 id 精确过滤（区分大小写）。"""
        client = self._client()
        try:
            with bind_log_context(op="tags.list"):
                tags = client.get_tags()
        finally:
            client.close()
        if title is not None:
            tags = [tag for tag in tags if tag.get("title") == title]
        if tag_id is not None:
            tags = [tag for tag in tags if tag.get("id") == tag_id]
        return tags

    def send_tags(self, names: Sequence[str]) -> list[str]:
        """将标签名解析为 id 后推送给宿主；无法解析的名称记录后跳过。"""
        if isinstance(names, str):
            names = [names]
        catalog = {tag.get("title"): tag.get("id") for tag in self.get_tags()}
        resolved: list[str] = []
        for name in names:
            tag_id = catalog.get(name)
            if tag_id is None:
                self.log(f"Tag not found, skipping: {name}", "warning")
                continue
            resolved.append(tag_id)
        self._writer.emit(envelopes.push_tags(resolved))
        return resolved

    def send_email(
        self,
        to: str | Sequence[str],
        subject: str,
        body: str,
        *,
        cc: str | Sequence[str] | None = None,
        bcc: str | Sequence[str] | None = None,
        importance: str = "normal",
        button: str | None = None,
        attachments: Sequence[str | Path] | None = None,
    ) -> dict[str, Any]:
        """通过宿主邮件接口发送邮件，可附带本地文件。"""
        try:
            level = Importance(str(importance).lower())
        except ValueError as exc:
            raise ValueError(f"invalid importance: {importance!r} (expected low, normal or high)") from exc
        paths = [Path(item) for item in attachments or []]
        for path in paths:
            if not path.is_file():
                raise FileNotFoundError(f"attachment not found: {path}")
        message: dict[str, Any] = {
            "to": _join_addresses(to),
            "subject": subject,
            "body": body,
            "importance": level.value,
            # 宿主以显式 null 表示不渲染按钮。
            "button": button,
        }
        if cc:
            message["cc"] = _join_addresses(cc)
        if bcc:
            message["bcc"] = _join_addresses(bcc)
        client = self._client()
        try:
            with bind_log_context(op="email.send"):
                return client.send_email(message, priority=level.priority, attachments=paths)
        finally:
            client.close()


def lookup_param(ctx: JobContext, name: str, default: Any = None, environ: Mapping[str, str] | None = None) -> Any:
    """宿主约定参数同时导出为环境变量：先查环境变量，再查作业参数。"""
    environ = environ if environ is not None else os.environ
    if name in environ:
        return environ[name]
    if name in ctx.params:
        return ctx.params[name]
    return default


def job_flag(ctx: JobContext, name: str, environ: Mapping[str, str] | None = None) -> bool:
    return parse_bool(lookup_param(ctx, name, None, environ))


def _join_addresses(value: str | Sequence[str]) -> str:
    if isinstance(value, str):
        return value
    return ", ".join(str(item).strip() for item in value if str(item).strip())
