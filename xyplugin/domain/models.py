"""领域数据结构定义：作业上下文值对象。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from xyplugin.domain.schemas import InputFile, JobPayload


@dataclass(frozen=True, slots=True)
class JobContext:
    """插件执行上下文，启动时由 stdin 构建，之后只读并显式传递给各助手。"""
    params: dict[str, Any]
    input: dict[str, Any] | None
    files: list[InputFile]
    cwd: str | None
    base_url: str
    secrets: dict[str, Any]
    job_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> JobContext:
        """校验原始 JSON 并构建上下文；raw 原样保留用于回显。"""
        payload = JobPayload.model_validate(raw)
        job_input = payload.input
        return cls(
            params=dict(payload.params),
            input=job_input.model_dump() if job_input is not None else None,
            files=list(job_input.files) if job_input is not None else [],
            cwd=payload.cwd,
            base_url=payload.base_url.rstrip("/"),
            secrets=dict(payload.secrets),
            job_id=str(payload.id) if payload.id is not None else None,
            raw=raw,
        )

    @property
    def command(self) -> str:
        return str(self.params.get("command") or "")

    def input_data(self) -> Any:
        """返回 input.data；缺失时回退为整个 input 记录。"""
        if self.input is None:
            return None
        raw_input = self.raw.get("input")
        if isinstance(raw_input, dict) and raw_input.get("data") is not None:
            return raw_input["data"]
        return raw_input
