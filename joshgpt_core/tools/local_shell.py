"""本地 shell 命令工具（run_local_shell_command）。

在本机以单个受限子进程执行一条命令：

- command 必填；cwd 相对 workspace_root 解析且必须是已存在的目录。
- timeout_seconds 限制在 [1, max]，max_output_chars 限制在 [256, cap]。
- stdout / stderr 分别增量读取、分别截断并带截断标记。
- 超时先发 SIGTERM，宽限 1 秒后仍未退出则 SIGKILL。
- 无论成功、超时还是启动失败，都返回同一结构的 ToolExecutionResult，从不抛出执行期异常；
  只有参数校验失败会抛 ToolValidationError。
"""

import codecs
import json
import logging
import os
import platform
import signal
import subprocess
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from joshgpt_core.domain.exceptions import ToolValidationError
from joshgpt_core.infrastructure.logging.logger import log_event
from .definitions import ToolDef
from .mirror import safe_mirror_call

LOCAL_SHELL_TOOL_NAME = "run_local_shell_command"
TRUNCATION_SUFFIX = "\n...[truncated]"
MIN_TIMEOUT_SECONDS = 1
MIN_OUTPUT_CHARS = 256
# 模型侧 schema 的上限，与执行器配置的上限相互独立
SCHEMA_MAX_TIMEOUT_SECONDS = 900
SCHEMA_MAX_OUTPUT_CHARS = 200000
KILL_GRACE_SECONDS = 1.0
READ_CHUNK_BYTES = 4096

_IS_WINDOWS = platform.system() == "Windows"


@dataclass(frozen=True)
class ToolExecutionResult:
    """一次本地命令执行的结构化结果，创建后不再修改。"""

    tool: str
    environment: str
    command: str
    cwd: str
    shell: str
    timeout_seconds: int
    max_output_chars: int
    duration_ms: int
    exit_code: int
    signal: str
    timed_out: bool
    stdout: str
    stderr: str
    stdout_truncated: bool
    stderr_truncated: bool
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


def as_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool) or value is None:
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else fallback
    try:
        return int(str(value).strip())
    except ValueError:
        pass
    try:
        return as_int(float(str(value).strip()), fallback)
    except ValueError:
        return fallback


def bounded(value: Any, low: int, high: int, fallback: int) -> int:
    parsed = as_int(value, fallback)
    return max(low, min(high, parsed))


def truncate_text(value: Optional[str], max_chars: int, force: bool = False) -> Tuple[str, bool]:
    """超过上限（或 force=True）时截断并追加截断标记；未超过时原样返回。"""

    text = str(value or "")
    if not force and len(text) <= max_chars:
        return text, False
    head_chars = max(0, max_chars - len(TRUNCATION_SUFFIX))
    return f"{text[:head_chars]}{TRUNCATION_SUFFIX}", True


class _StreamBuffer:
    """单个输出流的累积缓冲，最多保留 max_chars 个字符。"""

    def __init__(self, max_chars: int):
        self.max_chars = max_chars
        self.text = ""
        self.truncated = False

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        remaining = self.max_chars - len(self.text)
        if remaining <= 0:
            self.truncated = True
            return
        if len(chunk) > remaining:
            self.text += chunk[:remaining]
            self.truncated = True
            return
        self.text += chunk

    def final(self) -> Tuple[str, bool]:
        return truncate_text(self.text, self.max_chars, force=self.truncated)


def pick_shell(command: str) -> Tuple[str, List[str]]:
    if _IS_WINDOWS:
        return "powershell.exe", ["-NoProfile", "-Command", command]
    if os.path.exists("/bin/bash"):
        return "/bin/bash", ["-lc", command]
    return "/bin/sh", ["-lc", command]


def resolve_cwd(raw_cwd: Any, workspace_root: Optional[str]) -> str:
    fallback = str(workspace_root or "").strip() or os.getcwd()
    requested = str(raw_cwd or "").strip()
    candidate = Path(requested).expanduser() if requested else Path(fallback)
    if not candidate.is_absolute():
        candidate = Path(fallback) / candidate
    normalized = candidate.resolve()
    if not normalized.is_dir():
        raise ToolValidationError(
            f"Working directory does not exist or is not a directory: {normalized}",
            cwd=str(normalized),
        )
    return str(normalized)


def local_shell_tool_def() -> ToolDef:
    return ToolDef(
        name=LOCAL_SHELL_TOOL_NAME,
        description=(
            "Run a shell command on the local host. "
            "When the host is attached to a container, this runs inside that container."
        ),
        parameters={
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "command": {
                    "type": "string",
                    "description": "Shell command text to execute.",
                },
                "cwd": {
                    "type": "string",
                    "description": "Optional working directory. Relative paths resolve from the workspace root.",
                },
                "timeout_seconds": {
                    "type": "integer",
                    "minimum": MIN_TIMEOUT_SECONDS,
                    "maximum": SCHEMA_MAX_TIMEOUT_SECONDS,
                    "description": "Optional timeout in seconds.",
                },
                "max_output_chars": {
                    "type": "integer",
                    "minimum": MIN_OUTPUT_CHARS,
                    "maximum": SCHEMA_MAX_OUTPUT_CHARS,
                    "description": "Optional max characters kept for stdout and stderr.",
                },
            },
            "required": ["command"],
        },
    )


def local_shell_openai_tool() -> Dict[str, Any]:
    return local_shell_tool_def().to_openai()


def _signal_process(proc: subprocess.Popen, force: bool = False) -> None:
    """向子进程（POSIX 下为整个进程组）发送终止信号。"""

    if _IS_WINDOWS:
        try:
            proc.kill() if force else proc.terminate()
        except OSError:
            pass
        return

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        os.killpg(os.getpgid(proc.pid), sig)
    except (ProcessLookupError, PermissionError, OSError):
        try:
            proc.send_signal(sig)
        except OSError:
            pass


def _signal_name(returncode: int) -> str:
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class LocalShellExecutor:
    """run_local_shell_command 的执行器。

    每次 execute 只管理一个子进程的生命周期；同一编排循环内不会并发调用。
    """

    def __init__(
        self,
        workspace_root: Optional[str] = None,
        default_timeout_seconds: int = 30,
        max_timeout_seconds: int = 300,
        default_max_output_chars: int = 12000,
        max_output_chars_cap: int = 50000,
        mirror: Optional[Any] = None,
    ):
        self.workspace_root = workspace_root or os.getcwd()
        self.max_timeout_seconds = max(MIN_TIMEOUT_SECONDS, as_int(max_timeout_seconds, 300))
        self.default_timeout_seconds = max(MIN_TIMEOUT_SECONDS, as_int(default_timeout_seconds, 30))
        self.max_output_chars_cap = max(MIN_OUTPUT_CHARS, as_int(max_output_chars_cap, 50000))
        self.default_max_output_chars = max(MIN_OUTPUT_CHARS, as_int(default_max_output_chars, 12000))
        self.mirror = mirror

    @classmethod
    def from_config(cls, config, mirror: Optional[Any] = None) -> "LocalShellExecutor":
        return cls(
            workspace_root=config.workspace_root,
            default_timeout_seconds=config.local_shell_default_timeout_seconds,
            max_timeout_seconds=config.local_shell_max_timeout_seconds,
            default_max_output_chars=config.local_shell_default_max_output_chars,
            max_output_chars_cap=config.local_shell_max_output_chars,
            mirror=mirror,
        )

    def execute(self, arguments: Optional[Dict[str, Any]]) -> ToolExecutionResult:
        args = arguments or {}
        command = str(args.get("command") or "").strip()
        if not command:
            raise ToolValidationError(f"{LOCAL_SHELL_TOOL_NAME} requires a non-empty 'command'.")

        cwd = resolve_cwd(args.get("cwd"), self.workspace_root)
        timeout_seconds = bounded(
            args.get("timeout_seconds"),
            MIN_TIMEOUT_SECONDS,
            self.max_timeout_seconds,
            self.default_timeout_seconds,
        )
        max_output_chars = bounded(
            args.get("max_output_chars"),
            MIN_OUTPUT_CHARS,
            self.max_output_chars_cap,
            self.default_max_output_chars,
        )

        executable, shell_args = pick_shell(command)
        started = time.monotonic()
        safe_mirror_call(
            self.mirror,
            "on_start",
            {
                "tool": LOCAL_SHELL_TOOL_NAME,
                "command": command,
                "cwd": cwd,
                "shell": executable,
                "shell_args": shell_args,
                "timeout_seconds": timeout_seconds,
                "max_output_chars": max_output_chars,
                "started_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        log_event(logging.INFO, "Local shell command started", command=command, cwd=cwd, timeout_seconds=timeout_seconds)

        stdout_buf = _StreamBuffer(max_output_chars)
        stderr_buf = _StreamBuffer(max_output_chars)

        def build(exit_code: int, signal_name: str, timed_out: bool, error: str = "") -> ToolExecutionResult:
            stdout, stdout_truncated = stdout_buf.final()
            stderr, stderr_truncated = stderr_buf.final()
            return ToolExecutionResult(
                tool=LOCAL_SHELL_TOOL_NAME,
                environment="local-host",
                command=command,
                cwd=cwd,
                shell=executable,
                timeout_seconds=timeout_seconds,
                max_output_chars=max_output_chars,
                duration_ms=int((time.monotonic() - started) * 1000),
                exit_code=exit_code,
                signal=signal_name,
                timed_out=timed_out,
                stdout=stdout,
                stderr=stderr,
                stdout_truncated=stdout_truncated,
                stderr_truncated=stderr_truncated,
                error=error,
            )

        popen_kwargs: Dict[str, Any] = {} if _IS_WINDOWS else {"start_new_session": True}
        try:
            proc = subprocess.Popen(
                [executable, *shell_args],
                cwd=cwd,
                env=os.environ.copy(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **popen_kwargs,
            )
        except OSError as exc:
            stderr_buf.append(str(exc))
            exit_code = exc.errno if isinstance(exc.errno, int) else 1
            result = build(exit_code=exit_code, signal_name="", timed_out=False, error=str(exc))
            log_event(logging.WARNING, "Local shell spawn failed", command=command, error=str(exc))
            safe_mirror_call(self.mirror, "on_exit", result.to_dict())
            return result

        lock = threading.Lock()
        readers = [
            threading.Thread(target=self._drain, args=(proc.stdout, stdout_buf, "on_stdout", lock), daemon=True),
            threading.Thread(target=self._drain, args=(proc.stderr, stderr_buf, "on_stderr", lock), daemon=True),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            proc.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            _signal_process(proc)
            try:
                proc.wait(timeout=KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                _signal_process(proc, force=True)
                proc.wait()

        for reader in readers:
            reader.join(timeout=KILL_GRACE_SECONDS * 2)

        returncode = proc.returncode
        if returncode is None:
            exit_code, signal_name = 1, ""
        elif returncode < 0:
            # 被信号终止时退出码不确定，保守记为 1
            exit_code, signal_name = 1, _signal_name(returncode)
        else:
            exit_code, signal_name = returncode, ""

        with lock:
            result = build(exit_code=exit_code, signal_name=signal_name, timed_out=timed_out)
        log_event(
            logging.INFO,
            "Local shell command finished",
            exit_code=result.exit_code,
            signal=result.signal,
            timed_out=result.timed_out,
            duration_ms=result.duration_ms,
        )
        safe_mirror_call(self.mirror, "on_exit", result.to_dict())
        return result

    def _drain(self, stream, buf: _StreamBuffer, hook: str, lock: threading.Lock) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = stream.read1(READ_CHUNK_BYTES)
                if not chunk:
                    break
                self._deliver(decoder.decode(chunk), buf, hook, lock)
            self._deliver(decoder.decode(b"", final=True), buf, hook, lock)
        except (OSError, ValueError) as exc:
            log_event(logging.DEBUG, "Local shell stream closed early", hook=hook, error=str(exc))
        finally:
            stream.close()

    def _deliver(self, text: str, buf: _StreamBuffer, hook: str, lock: threading.Lock) -> None:
        if not text:
            return
        with lock:
            buf.append(text)
            safe_mirror_call(self.mirror, hook, {"text": text})


def run_local_shell_tool_call(
    arguments: Optional[Dict[str, Any]],
    workspace_root: Optional[str] = None,
    default_timeout_seconds: int = 30,
    max_timeout_seconds: int = 300,
    default_max_output_chars: int = 12000,
    max_output_chars_cap: int = 50000,
    mirror: Optional[Any] = None,
) -> ToolExecutionResult:
    """函数式入口：构造一次性的执行器并执行。"""

    executor = LocalShellExecutor(
        workspace_root=workspace_root,
        default_timeout_seconds=default_timeout_seconds,
        max_timeout_seconds=max_timeout_seconds,
        default_max_output_chars=default_max_output_chars,
        max_output_chars_cap=max_output_chars_cap,
        mirror=mirror,
    )
    return executor.execute(arguments)
