"""单轮对话 trace 记录器。"""

from __future__ import annotations

import json
from typing import Any, List

from joshgpt_core.domain.models import TraceEvent, TraceEventType, utc_now_iso

MAX_DETAIL_CHARS = 1200
MAX_SUMMARY_CHARS = 600


class TraceRecorder:
    """按顺序累积本轮的 TraceEvent，交给调用方持久化。

    只追加，不修改；details 统一截断到 MAX_DETAIL_CHARS。
    """

    def __init__(self) -> None:
        self.events: List[TraceEvent] = []

    def add(self, type: TraceEventType, summary: str, details: Any = "") -> TraceEvent:
        event = TraceEvent(
            timestamp=utc_now_iso(),
            type=type,
            summary=str(summary or ""),
            details=_cap(details if isinstance(details, str) else summarize_data(details), MAX_DETAIL_CHARS),
        )
        self.events.append(event)
        return event

    def snapshot(self) -> List[TraceEvent]:
        return list(self.events)

    def __len__(self) -> int:
        return len(self.events)


def summarize_data(data: Any) -> str:
    """把事件数据压缩成适合放进 details 的短文本。"""

    if data is None:
        return ""
    if isinstance(data, str):
        return data[:MAX_SUMMARY_CHARS]
    try:
        return json.dumps(data, ensure_ascii=False, indent=2)[:MAX_DETAIL_CHARS]
    except (TypeError, ValueError):
        return str(data)[:MAX_SUMMARY_CHARS]


def _cap(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]
