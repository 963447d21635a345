"""原生流式端点的 SSE 解码与文本增量提取。

- SseFrameDecoder: 逐行喂入，遇到空行产出一个帧（event + data），流结束时 flush 残留帧。
- DELTA_STRATEGIES: 按固定优先级尝试的纯函数，从不同形状的 data 中取出文本增量。
- NativeStreamAccumulator: 把帧转换为 NativeStreamEvent，累积文本并按到达顺序通知观察者。

chat.end 的规则：只有在此前没有出现过 message.delta 时才贡献文本，
避免把结尾的汇总内容重复计入。
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple

from joshgpt_core.domain.models import NativeStreamEvent, NativeStreamResult
from joshgpt_core.infrastructure.logging.logger import log_event

DONE_MARKER = "[DONE]"
CHAT_END_EVENT = "chat.end"
MESSAGE_DELTA_EVENT = "message.delta"

EventObserver = Callable[[NativeStreamEvent], None]


@dataclass
class SseFrame:
    event: str
    data: str


class SseFrameDecoder:
    """增量 SSE 解码器：event:/data: 行组成一帧，空行结束一帧，冒号开头为注释。"""

    def __init__(self) -> None:
        self._event = ""
        self._data: List[str] = []

    def feed_line(self, line: str) -> Optional[SseFrame]:
        line = line.rstrip("\r")
        if not line:
            return self._emit()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value.strip()
        elif field == "data":
            self._data.append(value)
        return None

    def feed(self, lines: Iterable[str]) -> Iterable[SseFrame]:
        for line in lines:
            frame = self.feed_line(line)
            if frame is not None:
                yield frame
        tail = self.flush()
        if tail is not None:
            yield tail

    def flush(self) -> Optional[SseFrame]:
        return self._emit()

    def _emit(self) -> Optional[SseFrame]:
        if not self._event and not self._data:
            return None
        frame = SseFrame(event=self._event, data="\n".join(self._data))
        self._event = ""
        self._data = []
        return frame


# ---- 文本增量提取策略 ----


def _explicit_text_field(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    for key in ("delta", "text", "content"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _delta_object(data: Any) -> Optional[str]:
    if not isinstance(data, dict) or not isinstance(data.get("delta"), dict):
        return None
    delta = data["delta"]
    for key in ("content", "text"):
        value = delta.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _collect_text(items: List[Any]) -> str:
    parts: List[str] = []
    for item in items:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict):
            if isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item.get("content"), str):
                parts.append(item["content"])
            elif isinstance(item.get("content"), list):
                parts.append(_collect_text(item["content"]))
    return "".join(parts)


def _nested_arrays(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    containers = [data]
    if isinstance(data.get("result"), dict):
        containers.append(data["result"])
    for container in containers:
        for key in ("output", "content"):
            items = container.get(key)
            if isinstance(items, list):
                text = _collect_text(items)
                if text:
                    return text
    return None


def _openai_shapes(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str) and delta["content"]:
            return delta["content"]
    response = data.get("response")
    if isinstance(response, dict) and isinstance(response.get("output"), list):
        parts: List[str] = []
        for item in response["output"]:
            if not isinstance(item, dict) or not isinstance(item.get("content"), list):
                continue
            for block in item["content"]:
                if isinstance(block, dict) and isinstance(block.get("text"), str):
                    parts.append(block["text"])
        text = "".join(parts)
        if text:
            return text
    return None


DELTA_STRATEGIES: Tuple[Callable[[Any], Optional[str]], ...] = (
    _explicit_text_field,
    _delta_object,
    _nested_arrays,
    _openai_shapes,
)


def is_reasoning_event(name: str) -> bool:
    return str(name or "").lower().startswith("reasoning.")


def is_terminal_event(name: str) -> bool:
    lowered = str(name or "").lower()
    return (
        lowered in ("done", CHAT_END_EVENT)
        or lowered.endswith(".done")
        or lowered.endswith(".completed")
        or lowered.endswith(".end")
    )


def classify_event(name: str) -> str:
    """事件名 -> 追踪事件类型（reasoning / stream-end / stream）。"""

    if is_reasoning_event(name):
        return "reasoning"
    if is_terminal_event(name):
        return "stream-end"
    return "stream"


def extract_delta(name: str, data: Any) -> str:
    """按固定顺序尝试各策略；推理事件与除 chat.end 以外的终止事件不贡献文本。"""

    lowered = str(name or "").lower()
    if is_reasoning_event(lowered):
        return ""
    if is_terminal_event(lowered) and lowered != CHAT_END_EVENT:
        return ""
    for strategy in DELTA_STRATEGIES:
        value = strategy(data)
        if value:
            return value
    return ""


def _parse_data(raw: str) -> Any:
    text = raw.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return raw


class NativeStreamAccumulator:
    """累积原生流式事件与助手文本。"""

    def __init__(self, on_event: Optional[EventObserver] = None):
        self.events: List[NativeStreamEvent] = []
        self._parts: List[str] = []
        self._seen_message_delta = False
        self._on_event = on_event

    def feed(self, frame: SseFrame) -> NativeStreamEvent:
        if frame.data.strip() == DONE_MARKER:
            event = NativeStreamEvent(event="done", data=None, delta_text="", raw=frame.data)
        else:
            data = _parse_data(frame.data)
            name = frame.event
            if not name and isinstance(data, dict) and isinstance(data.get("type"), str):
                name = data["type"]
            name = name or "message"
            event = NativeStreamEvent(event=name, data=data, delta_text=self._delta_for(name, data), raw=frame.data)

        if event.delta_text:
            self._parts.append(event.delta_text)
        self.events.append(event)
        self._notify(event)
        return event

    def _delta_for(self, name: str, data: Any) -> str:
        lowered = name.lower()
        if lowered == CHAT_END_EVENT and self._seen_message_delta:
            return ""
        if lowered == MESSAGE_DELTA_EVENT:
            self._seen_message_delta = True
        return extract_delta(name, data)

    def _notify(self, event: NativeStreamEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as exc:  # noqa: BLE001 - 观察者失败不影响流的消费
            log_event(logging.DEBUG, "Native stream observer failed", stream_event=event.event, error=str(exc))

    @property
    def text(self) -> str:
        return "".join(self._parts).strip()

    def result(self) -> NativeStreamResult:
        return NativeStreamResult(text=self.text, events=list(self.events))
