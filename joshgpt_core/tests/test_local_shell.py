import errno
import json
import platform

import pytest

from joshgpt_core.domain.exceptions import ToolValidationError
from joshgpt_core.tools.local_shell import (
    LOCAL_SHELL_TOOL_NAME,
    TRUNCATION_SUFFIX,
    LocalShellExecutor,
    bounded,
    local_shell_openai_tool,
    run_local_shell_tool_call,
    truncate_text,
)
from joshgpt_core.tools.mirror import LineSinkShellMirror, safe_mirror_call

posix_only = pytest.mark.skipif(platform.system() == "Windows", reason="POSIX shell required")


class RecordingMirror:
    def __init__(self):
        self.events = []

    def on_start(self, event):
        self.events.append(("start", event))

    def on_stdout(self, event):
        self.events.append(("stdout", event))

    def on_stderr(self, event):
        self.events.append(("stderr", event))

    def on_exit(self, event):
        self.events.append(("exit", event))


class BrokenMirror:
    def on_start(self, event):
        raise RuntimeError("start")

    def on_stdout(self, event):
        raise RuntimeError("stdout")

    def on_stderr(self, event):
        raise RuntimeError("stderr")

    def on_exit(self, event):
        raise RuntimeError("exit")


class Sink:
    def __init__(self):
        self.lines = []

    def append_line(self, text):
        self.lines.append(text)


def test_tool_schema():
    tool = local_shell_openai_tool()
    fn = tool["function"]
    assert fn["name"] == LOCAL_SHELL_TOOL_NAME
    assert fn["parameters"]["required"] == ["command"]
    assert fn["parameters"]["additionalProperties"] is False
    assert fn["parameters"]["properties"]["timeout_seconds"]["maximum"] == 900
    assert fn["parameters"]["properties"]["max_output_chars"]["minimum"] == 256


def test_truncate_text_within_cap_is_noop():
    assert truncate_text("hello", 10) == ("hello", False)
    text, truncated = truncate_text("x" * 500, 300)
    assert truncated is True
    assert len(text) == 300
    assert text.endswith(TRUNCATION_SUFFIX)


def test_bounded():
    assert bounded("abc", 1, 300, 30) == 30
    assert bounded(10000, 1, 300, 30) == 300
    assert bounded(0, 1, 300, 30) == 1
    assert bounded("12", 1, 300, 30) == 12
    assert bounded(None, 256, 50000, 12000) == 12000


def test_empty_command_rejected(tmp_path):
    with pytest.raises(ToolValidationError) as exc:
        LocalShellExecutor(workspace_root=str(tmp_path)).execute({"command": "   "})
    assert exc.value.message == "run_local_shell_command requires a non-empty 'command'."


def test_missing_cwd_rejected(tmp_path):
    with pytest.raises(ToolValidationError) as exc:
        LocalShellExecutor(workspace_root=str(tmp_path)).execute({"command": "pwd", "cwd": "nope"})
    assert "Working directory does not exist or is not a directory" in exc.value.message


@posix_only
def test_pwd_in_relative_cwd(tmp_path):
    (tmp_path / "sub").mkdir()
    result = LocalShellExecutor(workspace_root=str(tmp_path)).execute({"command": "pwd", "cwd": "sub"})
    assert result.exit_code == 0
    assert result.stdout.strip() == str((tmp_path / "sub").resolve())
    assert result.timed_out is False
    assert result.signal == ""
    assert result.stdout_truncated is False


@posix_only
def test_exit_code_and_stderr(tmp_path):
    result = run_local_shell_tool_call(
        {"command": "echo out; echo err 1>&2; exit 3"},
        workspace_root=str(tmp_path),
    )
    assert result.exit_code == 3
    assert "out" in result.stdout
    assert "err" in result.stderr
    payload = json.loads(result.to_json())
    assert payload["tool"] == LOCAL_SHELL_TOOL_NAME
    assert payload["exit_code"] == 3


@posix_only
def test_timeout_kills_process(tmp_path):
    result = LocalShellExecutor(workspace_root=str(tmp_path)).execute(
        {"command": "sleep 5", "timeout_seconds": 1}
    )
    assert result.timed_out is True
    assert result.signal != ""
    assert result.exit_code == 1
    assert result.duration_ms < 4500


@posix_only
def test_output_truncated_at_cap(tmp_path):
    result = LocalShellExecutor(workspace_root=str(tmp_path)).execute(
        {"command": "head -c 2000 /dev/zero | tr '\\0' a", "max_output_chars": 300}
    )
    assert result.max_output_chars == 300
    assert result.stdout_truncated is True
    assert len(result.stdout) == 300
    assert result.stdout.endswith(TRUNCATION_SUFFIX)


@posix_only
def test_mirror_receives_ordered_events(tmp_path):
    mirror = RecordingMirror()
    result = LocalShellExecutor(workspace_root=str(tmp_path), mirror=mirror).execute({"command": "echo hi"})
    kinds = [kind for kind, _ in mirror.events]
    assert kinds[0] == "start"
    assert kinds[-1] == "exit"
    assert "stdout" in kinds
    assert mirror.events[0][1]["command"] == "echo hi"
    assert mirror.events[-1][1]["exit_code"] == result.exit_code


@posix_only
def test_mirror_faults_are_swallowed(tmp_path):
    result = LocalShellExecutor(workspace_root=str(tmp_path), mirror=BrokenMirror()).execute({"command": "echo hi"})
    assert result.exit_code == 0
    assert result.stdout.strip() == "hi"


def test_spawn_failure_returns_result(tmp_path, monkeypatch):
    monkeypatch.setattr(
        "joshgpt_core.tools.local_shell.pick_shell",
        lambda command: (str(tmp_path / "no-such-shell"), ["-c", command]),
    )
    mirror = RecordingMirror()
    result = LocalShellExecutor(workspace_root=str(tmp_path), mirror=mirror).execute({"command": "echo hi"})
    assert result.exit_code == errno.ENOENT
    assert result.error
    assert result.signal == ""
    assert mirror.events[-1][0] == "exit"


def test_line_sink_mirror():
    sink = Sink()
    mirror = LineSinkShellMirror(sink)
    mirror.on_start({"command": "ls", "cwd": "/tmp", "shell": "/bin/bash", "timeout_seconds": 30})
    mirror.on_stdout({"text": "a\nb"})
    mirror.on_stdout({"text": "c\n"})
    mirror.on_exit({"exit_code": 0, "signal": "", "timed_out": False, "duration_ms": 5})
    assert "$ ls" in sink.lines
    assert sink.lines[-3:-1] == ["a", "bc"]
    assert "exit_code=0 signal=- timed_out=False duration_ms=5" in sink.lines[-1]


def test_safe_mirror_call_ignores_missing_hooks():
    safe_mirror_call(None, "on_start", {})
    safe_mirror_call(object(), "on_start", {})
    safe_mirror_call(BrokenMirror(), "on_exit", {})
