import json
import os
import re
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from joshgpt_core.config.settings import settings
from joshgpt_core.domain.exceptions import BusinessError
from joshgpt_core.domain.models import Role, TraceEvent, utc_now_iso
from joshgpt_core.domain.session import Session, SessionMessage

DEFAULT_TITLE = "New Session"
TITLE_MAX_CHARS = 48
STATE_FILE = "sessions.json"


def derive_title(text: str) -> str:
    cleaned = re.sub(r"\s+", " ", str(text or "").strip())
    if not cleaned:
        return DEFAULT_TITLE
    return f"{cleaned[:TITLE_MAX_CHARS]}..." if len(cleaned) > TITLE_MAX_CHARS else cleaned


class JsonSessionStore:
    """基于单个 JSON 文件的会话存储。

    新会话插入列表最前并成为活动会话；删除活动会话时，
    剩余列表中的第一个成为新的活动会话。每次修改后原子写回磁盘。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / STATE_FILE
        self._sessions: List[Session] = []
        self._active_session_id: Optional[str] = None
        self._load()

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_session_id

    def list_sessions(self) -> List[Session]:
        return list(self._sessions)

    def get_session(self, session_id: str) -> Optional[Session]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def get_active_session(self) -> Optional[Session]:
        if not self._active_session_id:
            return None
        return self.get_session(self._active_session_id)

    def create_session(self, title: str = DEFAULT_TITLE) -> Session:
        now = utc_now_iso()
        session = Session(
            id=f"session-{uuid4().hex[:12]}",
            title=str(title or DEFAULT_TITLE),
            created_at=now,
            updated_at=now,
        )
        self._sessions.insert(0, session)
        self._active_session_id = session.id
        self._persist()
        return session

    def ensure_active_session(self) -> Session:
        return self.get_active_session() or self.create_session()

    def set_active_session(self, session_id: str) -> Optional[Session]:
        session = self.get_session(session_id)
        if session is None:
            return None
        self._active_session_id = session.id
        self._persist()
        return session

    def delete_session(self, session_id: str) -> None:
        remaining = [s for s in self._sessions if s.id != session_id]
        if len(remaining) == len(self._sessions):
            return
        self._sessions = remaining
        if self._active_session_id == session_id:
            self._active_session_id = remaining[0].id if remaining else None
        self._persist()

    def append_message(self, session_id: str, role: Role, content: str) -> SessionMessage:
        session = self._require(session_id)
        message = SessionMessage(role=role, content=str(content or ""), timestamp=utc_now_iso())
        session.messages.append(message)
        session.updated_at = message.timestamp
        self._active_session_id = session.id
        if role == "user" and session.title == DEFAULT_TITLE:
            session.title = derive_title(content)
        self._persist()
        return message

    def append_trace_events(self, session_id: str, events: Iterable[TraceEvent]) -> None:
        session = self._require(session_id)
        session.trace_events.extend(e.to_dict() if isinstance(e, TraceEvent) else dict(e) for e in events)
        session.updated_at = utc_now_iso()
        self._persist()

    def _require(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise BusinessError(code="SESSION_NOT_FOUND", message=f"Session not found: {session_id}", http_status=404)
        return session

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        self._sessions = [self._to_session(raw) for raw in data.get("sessions") or [] if isinstance(raw, dict)]
        active = data.get("active_session_id")
        if active and self.get_session(active) is None:
            active = self._sessions[0].id if self._sessions else None
        self._active_session_id = active

    def _persist(self) -> None:
        tmp_path = self._root / f"{STATE_FILE}.{uuid4().hex}.tmp"
        obj = {
            "active_session_id": self._active_session_id,
            "sessions": [asdict(s) for s in self._sessions],
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_session(data: Dict[str, Any]) -> Session:
        created_at = str(data.get("created_at") or utc_now_iso())
        return Session(
            id=str(data.get("id") or f"session-{uuid4().hex[:12]}"),
            title=str(data.get("title") or DEFAULT_TITLE),
            created_at=created_at,
            updated_at=str(data.get("updated_at") or created_at),
            messages=[
                SessionMessage(
                    role="assistant" if m.get("role") == "assistant" else "user",
                    content=str(m.get("content") or ""),
                    timestamp=str(m.get("timestamp") or created_at),
                )
                for m in data.get("messages") or []
                if isinstance(m, dict)
            ],
            trace_events=[e for e in data.get("trace_events") or [] if isinstance(e, dict)],
        )
