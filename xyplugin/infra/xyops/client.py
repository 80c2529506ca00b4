"""xyOps HTTP 客户端：封装 bucket、tag 与邮件接口，统一错误转换与结构化日志。"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from xyplugin.config import Settings
from xyplugin.domain.errors import RemoteHelperError


@dataclass(slots=True)
class XyOpsCredentials:
    """宿主 API 认证凭据对象。"""
    api_key: str


logger = logging.getLogger(__name__)


class XyOpsClient:
    """xyOps 同步 HTTP 客户端封装；每次调用只发一次请求，不重试。"""
    def __init__(
        self,
        base_url: str,
        credentials: XyOpsCredentials,
        settings: Settings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise RemoteHelperError("job has no base_url; cannot reach the xyOps API")
        self._base_url = base_url.rstrip("/")
        self._settings = settings
        self._closed = False
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            headers={"X-API-KEY": credentials.api_key},
            transport=transport,
        )

    def _client_or_raise(self) -> httpx.Client:
        if self._closed:
            raise RuntimeError("XyOpsClient is already closed")
        return self._client

    def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    def _request(
        self,
        *,
        method: str,
        path: str,
        op: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: list[tuple[str, tuple[str, Any, str]]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """发送请求；网络错误与非 2xx 转为 RemoteHelperError，保留原始细节。"""
        started = time.perf_counter()
        try:
            response = self._client_or_raise().request(
                method,
                path,
                params=params,
                json=json_body,
                data=data,
                files=files,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            detail = _response_detail(exc.response)
            self._log_failure(op, duration_ms, exc, exc.response.status_code)
            raise RemoteHelperError(
                f"{op} failed: HTTP {exc.response.status_code}: {detail}",
                status_code=exc.response.status_code,
                detail=detail,
            ) from exc
        except httpx.HTTPError as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            self._log_failure(op, duration_ms, exc, None)
            raise RemoteHelperError(f"{op} failed: {type(exc).__name__}: {exc}", detail=str(exc)) from exc
        logger.debug(
            "xyops request completed",
            extra={
                "event": "xyops.request.completed",
                "external_service": "xyops",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
        return response

    @staticmethod
    def _log_failure(op: str, duration_ms: float, exc: Exception, status_code: int | None) -> None:
        logger.error(
            "xyops request failed",
            extra={
                "event": "xyops.request.failed",
                "external_service": "xyops",
                "op": op,
                "duration_ms": duration_ms,
                "status_code": status_code,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )

    def _api_call(self, *, op: str, **kwargs: Any) -> dict[str, Any]:
        """调用返回 {code, ...} 的 API，code 非 0 视为失败。"""
        response = self._request(op=op, **kwargs)
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise RemoteHelperError(f"{op} failed: response is not JSON", detail=response.text[:500]) from exc
        if not isinstance(payload, dict):
            raise RemoteHelperError(f"{op} failed: unexpected response shape", detail=str(payload)[:500])
        code = payload.get("code", 0)
        if code not in (0, "0"):
            description = str(payload.get("description") or payload.get("message") or "no description")
            raise RemoteHelperError(f"{op} failed: {description} (code {code})", detail=description)
        return payload

    def get_bucket(self, bucket_id: str) -> dict[str, Any]:
        """读取 bucket 元数据、数据与文件清单。"""
        return self._api_call(
            method="GET",
            path=self._settings.get_bucket_path,
            op="bucket.get",
            params={"id": bucket_id},
        )

    def write_bucket_data(self, bucket_id: str, data: Any) -> dict[str, Any]:
        return self._api_call(
            method="POST",
            path=self._settings.write_bucket_data_path,
            op="bucket.write_data",
            json_body={"id": bucket_id, "data": data},
        )

    def upload_bucket_file(self, bucket_id: str, path: Path) -> dict[str, Any]:
        """以 multipart 方式上传单个本地文件到 bucket。"""
        with path.open("rb") as handle:
            return self._api_call(
                method="POST",
                path=self._settings.upload_bucket_files_path,
                op="bucket.upload_file",
                params={"id": bucket_id},
                files=[("file1", (path.name, handle, "application/octet-stream"))],
            )

    def delete_bucket_file(self, bucket_id: str, filename: str) -> dict[str, Any]:
        return self._api_call(
            method="POST",
            path=self._settings.delete_bucket_file_path,
            op="bucket.delete_file",
            json_body={"id": bucket_id, "filename": filename},
        )

    def download(self, remote_path: str) -> bytes:
        """按 bucket 文件清单中的 path 拉取文件内容。"""
        response = self._request(method="GET", path="/" + remote_path.lstrip("/"), op="bucket.download_file")
        return response.content

    def get_tags(self) -> list[dict[str, Any]]:
        payload = self._api_call(method="GET", path=self._settings.get_tags_path, op="tags.list")
        return list(payload.get("rows") or [])

    def send_email(
        self,
        body: dict[str, Any],
        *,
        priority: str,
        attachments: list[Path] | None = None,
    ) -> dict[str, Any]:
        """提交 multipart 邮件请求：json 段为正文参数，其余段为附件。"""
        handles = []
        try:
            files: list[tuple[str, tuple[str, Any, str]]] = [
                ("json", ("email.json", json.dumps(body, ensure_ascii=False).encode("utf-8"), "application/json")),
            ]
            for index, attachment in enumerate(attachments or [], start=1):
                handle = attachment.open("rb")
                handles.append(handle)
                files.append((f"file{index}", (attachment.name, handle, "application/octet-stream")))
            return self._api_call(
                method="POST",
                path=self._settings.send_email_path,
                op="email.send",
                files=files,
                headers={"X-Priority": priority},
            )
        finally:
            for handle in handles:
                handle.close()


def _response_detail(response: httpx.Response) -> str:
    """提取错误响应中的可读信息。"""
    try:
        decoded = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text.strip()[:500] or "no response body"
    if isinstance(decoded, dict):
        for key in ("description", "message", "error"):
            value = decoded.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return str(decoded)[:500]
