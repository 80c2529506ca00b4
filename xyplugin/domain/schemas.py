"""stdin 作业描述的数据模型，约束宿主传入的 JSON 结构。"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InputFile(BaseModel):
    """宿主预先落盘的输入文件描述。"""
    model_config = ConfigDict(extra="allow")

    filename: str = ""
    path: str = ""
    size: int = 0


class JobInput(BaseModel):
    """作业输入：上游文件与数据。"""
    model_config = ConfigDict(extra="allow")

    files: list[InputFile] = Field(default_factory=list)
    data: Any = None


class JobPayload(BaseModel):
    """stdin 单行 JSON 的完整结构。"""
    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    input: JobInput | None = None
    cwd: str | None = None
    base_url: str = ""
    secrets: dict[str, Any] = Field(default_factory=dict)
