"""输出写入器：按行把字符串或紧凑 JSON 写入宿主读取的输出流，每次写后立即 flush。"""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from xyplugin.domain.errors import UnsupportedPayloadError

_STRUCTURED_TYPES = (dict, list, tuple, int, float, bool)


class OutputWriter:
    """宿主输出流写入器。"""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout

    @property
    def stream(self) -> TextIO:
        return self._stream

    def emit(self, value: Any) -> None:
        """写出一行：字符串原样输出，结构化值输出为紧凑 JSON。"""
        if isinstance(value, str):
            line = value
        elif isinstance(value, _STRUCTURED_TYPES):
            line = self._dumps(value)
        else:
            raise UnsupportedPayloadError(f"unsupported payload: {type(value).__name__}")
        # 宿主增量读取输出流，缓冲会直接阻塞进度上报。
        self._stream.write(line + "\n")
        self._stream.flush()

    @staticmethod
    def _dumps(value: Any) -> str:
        try:
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise UnsupportedPayloadError(f"unsupported payload: {exc}") from exc
