"""子进程执行器测试：使用当前解释器充当旧版解释器，验证输出转发与临时文件清理。"""

from __future__ import annotations

import io
import json
import sys
from pathlib import Path
from typing import Any

import pytest

from xyplugin.application.executor import SubprocessCommandExecutor
from xyplugin.application.runner import JobRunner
from xyplugin.config import Settings
from xyplugin.domain.errors import LegacyInterpreterUnavailable
from xyplugin.domain.models import JobContext
from xyplugin.infra.output.writer import OutputWriter


@pytest.fixture(autouse=True)
def _restore_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _run_legacy(
    command: str,
    workdir: Path,
    input_files: list[dict[str, Any]] | None = None,
    **params: Any,
) -> tuple[int, list[str]]:
    stream = io.StringIO()
    runner = JobRunner(settings=Settings(), writer=OutputWriter(stream), environ={})
    payload: dict[str, Any] = {
        "params": {"command": command, "useLegacyInterpreter": True, "legacyInterpreter": sys.executable, **params},
        "cwd": str(workdir),
    }
    if input_files is not None:
        payload["input"] = {"files": input_files}
    code = runner.run(JobContext.from_payload(payload))
    return code, stream.getvalue().splitlines()


def test_child_output_is_relayed(tmp_path: Path) -> None:
    """子进程内的助手与 print 输出按行转发，结束后以 code=0 收尾。"""
    code, lines = _run_legacy("send_progress(50)\nprint('hello from child')\nlog('child log')", tmp_path)

    assert code == 0
    assert lines == [
        "[INFO] Job Started",
        '{"xy":1,"progress":0.5}',
        "hello from child",
        "[INFO] child log",
        '{"xy":1,"code":0}',
        "[INFO] Job Finished",
    ]


def test_temporary_files_are_removed(tmp_path: Path) -> None:
    _run_legacy("print('x')", tmp_path)
    _run_legacy("raise SystemExit(4)", tmp_path)
    assert not any(item.name.startswith(".xyplugin-") for item in tmp_path.iterdir())


def test_child_failure_maps_to_job_failure(tmp_path: Path) -> None:
    """子进程非零退出：stderr 作为错误日志转发，终态为 999。"""
    command = "import sys\nsys.stderr.write('child exploded\\n')\nraise SystemExit(3)"
    code, lines = _run_legacy(command, tmp_path)

    assert code == 999
    assert "[ERROR] child exploded" in lines
    assert "[ERROR] Job failed: legacy interpreter exited with status 3" in lines
    assert json.loads(lines[-2]) == {"xy": 1, "code": 999, "description": "Job failed!"}
    assert lines[-1] == "[INFO] Job Finished"


def test_child_sees_job_context_and_params(tmp_path: Path) -> None:
    code, lines = _run_legacy("send_data({'mode': get_param('mode'), 'cwd': job.cwd})", tmp_path, mode="slow")
    assert code == 0
    assert json.loads(lines[1]) == {"xy": 1, "data": {"mode": "slow", "cwd": str(tmp_path)}}


def test_resolve_interpreter_checks_platform() -> None:
    executor = SubprocessCommandExecutor(Settings(), interpreter=sys.executable, platform="plan9")
    with pytest.raises(LegacyInterpreterUnavailable, match="plan9"):
        executor.resolve_interpreter()


def test_resolve_interpreter_returns_path() -> None:
    executor = SubprocessCommandExecutor(Settings(), interpreter=sys.executable, platform="linux")
    assert Path(executor.resolve_interpreter()).exists()


def test_extension_failure_reported_once(tmp_path: Path) -> None:
    """扩展加载失败只由父进程报告一次，子进程不再重复输出。"""
    bad = tmp_path / "broken.py"
    bad.write_text("raise ImportError('missing dependency')\n", encoding="utf-8")
    files = [{"filename": "broken.py", "path": str(bad), "size": 1}]
    code, lines = _run_legacy("print('ok')", tmp_path, input_files=files)

    assert code == 0
    assert "ok" in lines
    assert [line for line in lines if line.startswith("[ERROR]")] == [
        "[ERROR] Failed to load extension module broken.py: missing dependency",
    ]
