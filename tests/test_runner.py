"""执行壳测试：覆盖成功/失败终态、数据透传、上下文回显与扩展模块加载。"""

from __future__ import annotations

import io
import json
import os
from pathlib import Path
from typing import Any

import pytest

from xyplugin.application.runner import JOB_DATA_TITLE, JobRunner, read_job_context
from xyplugin.config import Settings
from xyplugin.domain.enums import RunState
from xyplugin.domain.errors import JobInputError
from xyplugin.domain.models import JobContext
from xyplugin.infra.output.writer import OutputWriter


def _run(payload: dict[str, Any], settings: Settings | None = None) -> tuple[int, list[str], JobRunner]:
    stream = io.StringIO()
    runner = JobRunner(settings=settings or Settings(), writer=OutputWriter(stream), environ={})
    code = runner.run(JobContext.from_payload(payload))
    return code, stream.getvalue().splitlines(), runner


def _envelopes(lines: list[str]) -> list[dict[str, Any]]:
    return [json.loads(line) for line in lines if line.startswith("{")]


@pytest.fixture(autouse=True)
def _restore_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """执行壳会切换工作目录，测试结束后恢复。"""
    monkeypatch.chdir(tmp_path)


def test_successful_command(tmp_path: Path) -> None:
    """正常执行：输出透传后以 code=0 收尾，最后一行为 Job Finished。"""
    code, lines, runner = _run({"params": {"command": "print(1)"}, "cwd": str(tmp_path)})

    assert code == 0
    assert lines == ["[INFO] Job Started", "1", '{"xy":1,"code":0}', "[INFO] Job Finished"]
    assert runner.state is RunState.terminated
    assert Path.cwd() == tmp_path


def test_failing_command_emits_failure_envelope(tmp_path: Path) -> None:
    """命令抛错：错误日志、code=999 终态，然后 Job Finished。"""
    command = "send_status('before')\nraise RuntimeError('disk full')\nsend_status('never')"
    code, lines, _ = _run({"params": {"command": command}, "cwd": str(tmp_path)})

    assert code == 999
    assert lines == [
        "[INFO] Job Started",
        '{"xy":1,"status":"before"}',
        "[ERROR] Job failed: disk full",
        "[ERROR] RuntimeError at <command> line 2",
        '{"xy":1,"code":999,"description":"Job failed!"}',
        "[INFO] Job Finished",
    ]


def test_exactly_one_terminal_envelope_last_before_finish(tmp_path: Path) -> None:
    for command in ("send_progress(10)", "send_progress(150)", "x = 1/0", ""):
        _, lines, _ = _run({"params": {"command": command}, "cwd": str(tmp_path)})
        terminal = [item for item in _envelopes(lines) if "code" in item]
        assert len(terminal) == 1
        assert json.loads(lines[-2]) == terminal[0]
        assert lines[-1] == "[INFO] Job Finished"


def test_helper_errors_become_job_failure(tmp_path: Path) -> None:
    """脚本中助手调用失败同样走统一失败边界。"""
    code, lines, _ = _run({"params": {"command": "get_bucket_data('b1')"}, "cwd": str(tmp_path)})
    assert code == 999
    assert "[ERROR] Job failed: no secrets assigned" in lines


def test_compile_error_is_raised_before_any_output(tmp_path: Path) -> None:
    stream = io.StringIO()
    runner = JobRunner(settings=Settings(), writer=OutputWriter(stream), environ={})
    with pytest.raises(SyntaxError):
        runner.run(JobContext.from_payload({"params": {"command": "def broken(:"}, "cwd": str(tmp_path)}))
    assert stream.getvalue() == ""


def test_script_namespace_has_job_context(tmp_path: Path) -> None:
    command = "send_data({'cwd': job.cwd, 'files': get_input_files(), 'flag': get_param('mode')})"
    _, lines, _ = _run({"params": {"command": command, "mode": "fast"}, "cwd": str(tmp_path)})
    assert _envelopes(lines)[0] == {"xy": 1, "data": {"cwd": str(tmp_path), "files": [], "flag": "fast"}}


def test_passdata_prefers_input_data(tmp_path: Path) -> None:
    payload = {
        "params": {"command": "", "passdata": True},
        "input": {"data": {"rows": 5}, "files": []},
        "cwd": str(tmp_path),
    }
    _, lines, _ = _run(payload)
    assert lines[0] == '{"xy":1,"data":{"rows":5}}'


def test_passdata_falls_back_to_whole_input(tmp_path: Path) -> None:
    payload = {
        "params": {"command": "", "passdata": "true"},
        "input": {"files": [{"filename": "a.txt", "path": "/tmp/a.txt", "size": 1}]},
        "cwd": str(tmp_path),
    }
    _, lines, _ = _run(payload)
    assert json.loads(lines[0]) == {"xy": 1, "data": payload["input"]}


def test_outputxyops_panel_round_trips(tmp_path: Path) -> None:
    """回显的 JSON 面板解析后应与原始输入逐字段一致。"""
    payload = {
        "id": "jmk1",
        "params": {"command": "", "outputxyops": 1, "nested": {"a": [1, 2, {"b": None}]}},
        "input": {"data": {"x": "ü"}},
        "cwd": str(tmp_path),
        "base_url": "http://xyops.test",
        "secrets": {"XYOPS_API_KEY": "k"},
    }
    _, lines, _ = _run(payload)

    panel = _envelopes(lines)[0]["markdown"]
    assert panel["title"] == JOB_DATA_TITLE
    content = panel["content"]
    assert content.startswith("```json\n") and content.endswith("\n```")
    assert json.loads(content[len("```json\n"):-len("\n```")]) == payload


def test_time_tagging_from_params(tmp_path: Path) -> None:
    _, lines, _ = _run({"params": {"command": "", "enableLogTime": "yes"}, "cwd": str(tmp_path)})
    assert lines[0].startswith("[") and lines[0].endswith("] [INFO] Job Started")
    assert lines[0] != "[INFO] Job Started"


def test_extension_modules_are_loaded(tmp_path: Path) -> None:
    """附带的 .py 文件作为扩展模块载入；加载失败只记录错误。"""
    good = tmp_path / "mathx.py"
    good.write_text("def double(x):\n    return x * 2\n", encoding="utf-8")
    bad = tmp_path / "broken.py"
    bad.write_text("raise ImportError('missing dependency')\n", encoding="utf-8")
    payload = {
        "params": {"command": "send_data([double(21), mathx.double(1)])"},
        "input": {
            "files": [
                {"filename": "broken.py", "path": str(bad), "size": 1},
                {"filename": "notes.txt", "path": str(tmp_path / "notes.txt"), "size": 1},
                {"filename": "mathx.py", "path": str(good), "size": 1},
            ]
        },
        "cwd": str(tmp_path),
    }
    code, lines, _ = _run(payload)

    assert code == 0
    assert lines[0] == "[ERROR] Failed to load extension module broken.py: missing dependency"
    assert lines[1] == "[INFO] Job Started"
    assert '{"xy":1,"data":[42,2]}' in lines


def test_missing_legacy_interpreter_reports_998(tmp_path: Path) -> None:
    settings = Settings(legacy_interpreter="xyplugin-no-such-interpreter")
    code, lines, _ = _run(
        {"params": {"command": "print(1)", "useLegacyInterpreter": True}, "cwd": str(tmp_path)},
        settings,
    )
    assert code == 998
    terminal = _envelopes(lines)[-1]
    assert terminal["code"] == 998
    assert "not found" in terminal["description"]
    assert "1" not in lines
    assert lines[-1] == "[INFO] Job Finished"


def test_unsupported_platform_reports_998(tmp_path: Path) -> None:
    settings = Settings(legacy_platforms="plan9")
    code, lines, _ = _run(
        {"params": {"command": "", "useLegacyInterpreter": "1"}, "cwd": str(tmp_path)},
        settings,
    )
    assert code == 998
    assert "not supported" in _envelopes(lines)[-1]["description"]


def test_read_job_context_parses_one_line() -> None:
    stream = io.StringIO('{"params": {"command": "pass"}, "cwd": "/tmp"}\n{"ignored": true}\n')
    ctx = read_job_context(stream)
    assert ctx.command == "pass"
    assert ctx.cwd == "/tmp"
    assert ctx.files == []
    assert stream.readline() == '{"ignored": true}\n'


@pytest.mark.parametrize("line", ["", "not json\n", "[1, 2]\n", '{"params": "oops"}\n'])
def test_read_job_context_rejects_bad_input(line: str) -> None:
    with pytest.raises(JobInputError):
        read_job_context(io.StringIO(line))


def test_working_directory_is_changed(tmp_path: Path) -> None:
    workdir = tmp_path / "job"
    workdir.mkdir()
    _, lines, _ = _run({"params": {"command": "import os\nsend_data(os.getcwd())"}, "cwd": str(workdir)})
    assert _envelopes(lines)[0] == {"xy": 1, "data": str(workdir)}
    assert os.getcwd() == str(workdir)


def test_invalid_time_tagging_flag_fails_job(tmp_path: Path) -> None:
    """无法识别的开关值在失败边界内处理，仍输出唯一终态与 Job Finished。"""
    code, lines, runner = _run({"params": {"command": "print(1)", "enableLogTime": "maybe"}, "cwd": str(tmp_path)})

    assert code == 999
    assert "[ERROR] Job failed: Invalid boolean value: maybe" in lines
    assert "1" not in lines
    assert json.loads(lines[-2]) == {"xy": 1, "code": 999, "description": "Job failed!"}
    assert lines[-1] == "[INFO] Job Finished"
    assert runner.state is RunState.terminated


@pytest.mark.parametrize("command", ["import sys\nsys.exit(0)\nprint('after')", "import sys\nsys.exit()"])
def test_clean_exit_is_success(tmp_path: Path, command: str) -> None:
    code, lines, _ = _run({"params": {"command": command}, "cwd": str(tmp_path)})
    assert code == 0
    assert lines == ["[INFO] Job Started", '{"xy":1,"code":0}', "[INFO] Job Finished"]


def test_nonzero_exit_is_failure(tmp_path: Path) -> None:
    """sys.exit 非零状态与子进程路径一致，按作业失败处理。"""
    code, lines, _ = _run({"params": {"command": "import sys\nsys.exit(3)"}, "cwd": str(tmp_path)})

    assert code == 999
    assert lines == [
        "[INFO] Job Started",
        "[ERROR] Job failed: command exited with status 3",
        "[ERROR] CommandFailedError at <command> line 2",
        '{"xy":1,"code":999,"description":"Job failed!"}',
        "[INFO] Job Finished",
    ]


def test_extension_with_dataclass_loads(tmp_path: Path) -> None:
    module = tmp_path / "rows.py"
    module.write_text(
        "from __future__ import annotations\n"
        "from dataclasses import dataclass\n\n\n"
        "@dataclass\n"
        "class Row:\n"
        "    name: str\n",
        encoding="utf-8",
    )
    payload = {
        "params": {"command": "send_data(Row('a').name)"},
        "input": {"files": [{"filename": "rows.py", "path": str(module), "size": 1}]},
        "cwd": str(tmp_path),
    }
    code, lines, _ = _run(payload)

    assert code == 0
    assert '{"xy":1,"data":"a"}' in lines
    assert not any(line.startswith("[ERROR]") for line in lines)
