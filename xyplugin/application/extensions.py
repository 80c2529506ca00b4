"""扩展模块加载：把作业附带的 Python 文件作为模块载入，导出其公开名称。"""

from __future__ import annotations

import importlib.util
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from types import ModuleType
from typing import Any

from xyplugin.domain.schemas import InputFile

logger = logging.getLogger(__name__)


def load_extension(path: Path) -> ModuleType:
    module_name = f"xyplugin_ext_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load extension module: {path}")
    module = importlib.util.module_from_spec(spec)
    # dataclasses 等会按模块名回查 sys.modules。
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def public_names(module: ModuleType) -> dict[str, Any]:
    exported = getattr(module, "__all__", None)
    if exported is None:
        exported = [name for name in vars(module) if not name.startswith("_")]
    return {name: getattr(module, name) for name in exported}


def load_extensions(
    files: list[InputFile],
    *,
    suffix: str,
    report_error: Callable[[str], None],
) -> dict[str, Any]:
    """逐个加载匹配后缀的输入文件；失败只记录错误并跳过。"""
    exports: dict[str, Any] = {}
    for item in files:
        name = item.filename or Path(item.path).name
        if not name.lower().endswith(suffix.lower()):
            continue
        path = Path(item.path or name)
        try:
            module = load_extension(path)
        except Exception as exc:
            logger.warning(
                "extension load failed",
                extra={"event": "extension.load.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            report_error(f"Failed to load extension module {name}: {exc}")
            continue
        exports[path.stem] = module
        exports.update(public_names(module))
    return exports
