from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Protocol, Iterable

from .models import Role, TraceEvent


@dataclass
class SessionMessage:
    role: Role
    content: str
    timestamp: str


@dataclass
class Session:
    id: str
    title: str
    created_at: str
    updated_at: str
    messages: List[SessionMessage] = field(default_factory=list)
    trace_events: List[Dict[str, Any]] = field(default_factory=list)


class OutputSink(Protocol):
    """人类可读的进度输出通道（例如 IDE 的 output channel）。"""

    def append_line(self, text: str) -> None:
        ...


class SessionStore(Protocol):
    def ensure_active_session(self) -> Session:
        ...

    def get_session(self, session_id: str) -> Optional[Session]:
        ...

    def append_message(self, session_id: str, role: Role, content: str) -> SessionMessage:
        ...

    def append_trace_events(self, session_id: str, events: Iterable[TraceEvent]) -> None:
        ...
