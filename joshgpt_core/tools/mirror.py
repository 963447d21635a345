"""本地命令输出镜像。

镜像是尽力而为的观察者：on_start / on_stdout / on_stderr / on_exit
中抛出的任何异常都会在调用点被吞掉，不能影响命令执行本身。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from joshgpt_core.domain.session import OutputSink
from joshgpt_core.infrastructure.logging.logger import log_event


class ShellMirror(Protocol):
    def on_start(self, event: Dict[str, Any]) -> None:
        ...

    def on_stdout(self, event: Dict[str, Any]) -> None:
        ...

    def on_stderr(self, event: Dict[str, Any]) -> None:
        ...

    def on_exit(self, event: Dict[str, Any]) -> None:
        ...


def safe_mirror_call(mirror: Optional[Any], method_name: str, payload: Dict[str, Any]) -> None:
    if mirror is None:
        return
    method = getattr(mirror, method_name, None)
    if not callable(method):
        return
    try:
        method(payload)
    except Exception as exc:  # noqa: BLE001 - 镜像失败不能中断命令执行
        log_event(logging.DEBUG, "Shell mirror call failed", hook=method_name, error=str(exc))


def _clock() -> str:
    return datetime.now(timezone.utc).strftime("%H:%M:%S")


class LineSinkShellMirror:
    """把命令的开始信息、输出块与退出摘要写到一个 OutputSink。"""

    def __init__(self, sink: OutputSink, prefix: str = "[joshgpt:shell]"):
        self._sink = sink
        self._prefix = prefix
        self._pending = ""

    def _write_lines(self, text: str) -> None:
        self._pending += text.replace("\r\n", "\n")
        *complete, self._pending = self._pending.split("\n")
        for line in complete:
            self._sink.append_line(line)

    def _flush(self) -> None:
        if self._pending:
            self._sink.append_line(self._pending)
            self._pending = ""

    def on_start(self, event: Dict[str, Any]) -> None:
        self._pending = ""
        self._sink.append_line(f"{self._prefix} [{_clock()}] local shell command")
        self._sink.append_line(f"{self._prefix} cwd: {event.get('cwd', '')}")
        self._sink.append_line(f"{self._prefix} shell: {event.get('shell', '')}")
        self._sink.append_line(f"{self._prefix} timeout: {event.get('timeout_seconds', 0)}s")
        self._sink.append_line(f"$ {event.get('command', '')}")

    def on_stdout(self, event: Dict[str, Any]) -> None:
        self._write_lines(str(event.get("text") or ""))

    def on_stderr(self, event: Dict[str, Any]) -> None:
        self._write_lines(str(event.get("text") or ""))

    def on_exit(self, event: Dict[str, Any]) -> None:
        self._flush()
        self._sink.append_line(
            f"{self._prefix} [{_clock()}] exit_code={event.get('exit_code', 0)} "
            f"signal={event.get('signal') or '-'} timed_out={bool(event.get('timed_out'))} "
            f"duration_ms={event.get('duration_ms', 0)}"
        )
