"""日志上下文：基于 contextvars 透传 job/op 标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

_UNSET = object()

_job_id_var: ContextVar[str | None] = ContextVar("log_job_id", default=None)
_op_var: ContextVar[str | None] = ContextVar("log_op", default=None)


def get_log_context() -> dict[str, str | None]:
    """返回当前上下文下的日志字段。"""
    return {
        "job_id": _job_id_var.get(),
        "op": _op_var.get(),
    }


@contextmanager
def bind_log_context(
    *,
    job_id: str | None | object = _UNSET,
    op: str | None | object = _UNSET,
) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。"""
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = []
    if job_id is not _UNSET:
        tokens.append((_job_id_var, _job_id_var.set(job_id)))
    if op is not _UNSET:
        tokens.append((_op_var, _op_var.set(op)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
