"""宿主协议信封构造：所有函数只做字段组装，不做序列化与写出。"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from xyplugin.domain.enums import TerminalCode

XY_TAG = 1


def _envelope(**payload: Any) -> dict[str, Any]:
    return {"xy": XY_TAG, **payload}


def _optional(body: dict[str, Any], **fields: Any) -> dict[str, Any]:
    """仅写入非 None 的可选字段。"""
    for key, value in fields.items():
        if value is not None:
            body[key] = value
    return body


def progress(percent: float, status: str | None = None) -> dict[str, Any]:
    if isinstance(percent, bool) or not isinstance(percent, (int, float)):
        raise TypeError(f"progress percent must be a number, got {type(percent).__name__}")
    if not 0 <= percent <= 100:
        raise ValueError(f"progress percent out of range [0, 100]: {percent}")
    return _optional(_envelope(progress=percent / 100), status=status)


def status(text: str) -> dict[str, Any]:
    return _envelope(status=text)


def label(text: str) -> dict[str, Any]:
    return _envelope(label=text)


def data(value: Any) -> dict[str, Any]:
    return _envelope(data=value)


def file(path: str) -> dict[str, Any]:
    return _envelope(files=[{"path": str(path), "delete": False}])


def perf(metrics: Mapping[str, float], scale: float | None = None) -> dict[str, Any]:
    body = dict(metrics)
    if scale is not None:
        body["scale"] = scale
    return _envelope(perf=body)


def table(
    rows: Sequence[Sequence[Any]],
    header: Sequence[str] | None = None,
    title: str | None = None,
    caption: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"rows": [list(row) for row in rows]}
    _optional(body, header=list(header) if header is not None else None, title=title, caption=caption)
    return _envelope(table=body)


def content_panel(kind: str, content: str, title: str | None = None, caption: str | None = None) -> dict[str, Any]:
    """html/text/markdown 三类面板共用的结构；内容不做任何转义。"""
    if kind not in {"html", "text", "markdown"}:
        raise ValueError(f"unknown panel kind: {kind}")
    body = _optional({"content": content}, title=title, caption=caption)
    return _envelope(**{kind: body})


def push_tags(tag_ids: Sequence[str]) -> dict[str, Any]:
    return _envelope(push={"tags": list(tag_ids)})


def terminal(code: int, description: str | None = None) -> dict[str, Any]:
    return _optional(_envelope(code=int(code)), description=description)


def success() -> dict[str, Any]:
    return terminal(TerminalCode.success)


def failure(description: str = "Job failed!", code: int = TerminalCode.failed) -> dict[str, Any]:
    return terminal(code, description)
