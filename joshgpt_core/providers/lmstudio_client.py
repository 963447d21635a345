"""LM Studio / OpenAI 兼容端点适配器。

本模块负责：

1. 接收统一的 ChatRequest，转换为 /chat/completions 请求格式（含工具 schema）。
2. 调用 HTTP 接口并处理网络/API 异常。
3. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。
4. 原生流式模式：把消息列表压成一段文本输入，POST 到 {native_base}/api/v1/chat，
   逐行解码 SSE 并把事件按到达顺序交给观察者。

换句话说，这里就是“端点 JSON ⇄ 项目内部统一模型”的转换层。
"""

import httpx
import json
import logging
from typing import Any, Dict, List, Optional

from joshgpt_core.config.settings import infer_native_base_url, normalize_base_url
from joshgpt_core.domain.models import (
    ChatRequest,
    ChatResult,
    ChatMessage,
    ChatChoice,
    ChatUsage,
    NativeStreamResult,
)
from joshgpt_core.domain.exceptions import NetworkError, ApiError, RateLimitError
from joshgpt_core.infrastructure.logging.logger import log_event
from joshgpt_core.tools.definitions import ToolCall
from joshgpt_core.tools.schema_adapter import parse_tool_arguments
from .native_stream import EventObserver, NativeStreamAccumulator, SseFrameDecoder

DEFAULT_API_KEY = "lm-studio"


def build_native_transcript(messages: List[ChatMessage]) -> str:
    """把消息列表转换为原生端点的单段文本输入。

    只有一条 user 消息时原样发送；否则每条渲染为 "<Role>: <content>"，以空行分隔。
    """

    usable = [m for m in messages if (m.content or "").strip()]
    if len(usable) == 1 and usable[0].role == "user":
        return usable[0].content
    return "\n\n".join(f"{m.role.capitalize()}: {m.content}" for m in usable)


class LmStudioClient:
    """OpenAI 兼容补全端点客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 标准补全调用，返回 ChatResult。
    - chat_native_stream: 原生流式调用，返回 NativeStreamResult。
    - list_models: 列出端点上可用的模型 ID。
    """

    name = "lmstudio"

    def __init__(self, config):
        # config 可以是 Settings，也可以是 ChatRunnerConfig
        self._config = config

    @property
    def base_url(self) -> str:
        return normalize_base_url(self._config.base_url)

    @property
    def native_base_url(self) -> str:
        explicit = getattr(self._config, "resolved_native_base_url", None) or getattr(
            self._config, "native_base_url", ""
        )
        return normalize_base_url(explicit) or infer_native_base_url(self.base_url)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {getattr(self._config, 'api_key', '') or DEFAULT_API_KEY}",
            "Content-Type": "application/json",
        }

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 构造 HTTP 请求 payload（工具列表为空时不声明 tools / tool_choice）。
        2. 发送请求并捕获网络错误/限流/服务端错误。
        3. 使用统一的解析函数构造 ChatResult。
        """

        payload = self._build_payload(req)
        try:
            with httpx.Client(timeout=self._config.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Chat completion rate limited", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"Chat completion failed ({resp.status_code}): {resp.text}",
                http_status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(
                code="API_ERROR",
                message=f"Chat completion returned a non-JSON body: {resp.text[:400]}",
                http_status=502,
            )
        return self._parse_response(data, req)

    def list_models(self) -> List[str]:
        try:
            with httpx.Client(timeout=self._config.http_timeout, trust_env=False) as client:
                resp = client.get(f"{self.base_url}/models", headers=self._headers())
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"Model list failed ({resp.status_code}): {resp.text}",
                http_status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(code="API_ERROR", message="Model list returned a non-JSON body", http_status=502)
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            return []
        return [str(m["id"]) for m in entries if isinstance(m, dict) and m.get("id")]

    def chat_native_stream(
        self,
        messages: List[ChatMessage],
        on_event: Optional[EventObserver] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> NativeStreamResult:
        """执行一次原生流式调用。

        每个事件在读取下一块数据之前就已经累积并交给 on_event。
        """

        payload: Dict[str, Any] = {
            "model": model or self._config.model,
            "input": [{"type": "text", "content": build_native_transcript(messages)}],
            "temperature": self._config.temperature if temperature is None else temperature,
            "stream": True,
        }
        limit = self._config.max_tokens if max_tokens is None else max_tokens
        if limit:
            payload["max_output_tokens"] = limit

        decoder = SseFrameDecoder()
        accumulator = NativeStreamAccumulator(on_event=on_event)
        url = f"{self.native_base_url}/api/v1/chat"
        try:
            with httpx.Client(timeout=self._config.http_timeout, trust_env=False) as client:
                with client.stream("POST", url, json=payload, headers=self._headers()) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        if resp.status_code == 429:
                            raise RateLimitError(code="RATE_LIMIT", message="Native chat rate limited", http_status=429)
                        raise ApiError(
                            code="API_ERROR",
                            message=f"Native chat stream failed ({resp.status_code}): {resp.text}",
                            http_status=resp.status_code,
                        )
                    for frame in decoder.feed(resp.iter_lines()):
                        accumulator.feed(frame)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

        log_event(logging.INFO, "Native stream completed", url=url, events=len(accumulator.events))
        return accumulator.result()

    def _build_payload(self, req: ChatRequest) -> dict:
        """将 ChatRequest 转成 /chat/completions 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature,
            "max_tokens": req.max_tokens if req.max_tokens is not None else self._config.max_tokens,
            "stream": False,
        }
        if req.tools:
            payload["tools"] = [tool.to_openai() for tool in req.tools]
            payload["tool_choice"] = req.tool_choice or "auto"
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        """将端点的原始响应 JSON 解析为统一的 ChatResult。"""

        if not isinstance(data, dict):
            data = {"response": data}
        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            if not isinstance(ch, dict):
                continue
            cm = self._build_chat_message(ch.get("message") or {})
            choices.append(ChatChoice(index=i, message=cm, finish_reason=ch.get("finish_reason")))

        usage = None
        usage_raw = data.get("usage")
        if isinstance(usage_raw, dict):
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )

        content = choices[0].message.content.strip() if choices else ""
        text = content or json.dumps(data, ensure_ascii=False, indent=2)
        return ChatResult(model=req.model, choices=choices, text=text, usage=usage, raw=data)

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条端点 message 转换为 ChatMessage，并解析其中的工具调用。"""

        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(payload.get("tool_calls") or []):
            if not isinstance(call, dict):
                continue
            func = call.get("function") or {}
            tool_calls.append(self._to_tool_call(
                call_id=call.get("id") or f"call_{idx}",
                name=func.get("name") or call.get("name") or "",
                raw=func.get("arguments"),
            ))

        # 部分模型仍返回旧版 function_call 字段
        function_call = payload.get("function_call")
        if isinstance(function_call, dict):
            tool_calls.append(self._to_tool_call(
                call_id=function_call.get("id") or "function_call",
                name=function_call.get("name") or "",
                raw=function_call.get("arguments"),
            ))

        content = payload.get("content")
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=content if isinstance(content, str) else "",
            tool_calls=[c for c in tool_calls if c.name] or None,
            tool_call_id=payload.get("tool_call_id"),
        )

    @staticmethod
    def _to_tool_call(call_id: str, name: str, raw: Any) -> ToolCall:
        if isinstance(raw, str):
            raw_text = raw
        else:
            raw_text = json.dumps(raw if raw is not None else {}, ensure_ascii=False)
        return ToolCall(id=call_id, name=name, arguments=parse_tool_arguments(raw), raw_arguments=raw_text)

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role, "content": message.content or ""}
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": call.raw_arguments or json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        if message.name and message.role == "tool":
            payload["name"] = message.name
        return payload
