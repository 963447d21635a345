"""对外 API 服务模块。

提供简化的函数接口供上层应用（IDE 扩展、CLI 等）调用：

- run_session_prompt: 一轮完整的会话提问（记录用户消息 -> 编排循环 -> 记录回答与 trace）。
- list_model_ids: 列出补全端点上可用的模型。
- mcp_status: 探测 MCP 网关并返回其工具名。
"""

import logging
from typing import Any, Dict, List, Optional

from joshgpt_core.agents.chat_runner import ChatRunner
from joshgpt_core.config.settings import settings
from joshgpt_core.domain.exceptions import BusinessError, ConfigurationError
from joshgpt_core.domain.models import ChatMessage, TraceEvent, utc_now_iso
from joshgpt_core.domain.session import OutputSink, SessionStore
from joshgpt_core.infrastructure.logging.logger import logger
from joshgpt_core.mcp.client import McpHttpClient
from joshgpt_core.providers.lmstudio_client import LmStudioClient
from joshgpt_core.tasks.config import ChatRunnerConfig


def _resolve_config(config: Optional[ChatRunnerConfig]) -> ChatRunnerConfig:
    return config if config is not None else ChatRunnerConfig.from_settings(settings)


def _emit(output: Optional[OutputSink], text: str) -> None:
    if output is not None:
        output.append_line(f"[joshgpt] {text}")


def build_model_messages(config: ChatRunnerConfig, history) -> List[ChatMessage]:
    messages: List[ChatMessage] = []
    if config.system_prompt:
        messages.append(ChatMessage(role="system", content=config.system_prompt))
    for item in history:
        messages.append(ChatMessage(role=item.role, content=item.content))
    return messages


def run_session_prompt(
    prompt: str,
    store: SessionStore,
    config: Optional[ChatRunnerConfig] = None,
    output: Optional[OutputSink] = None,
    session_id: Optional[str] = None,
    **collaborators: Any,
) -> Dict[str, Any]:
    """运行一轮会话提问。

    Args:
        prompt: 用户输入内容
        store: 会话存储
        config: 本轮配置（可选，不提供则取全局 settings）
        output: 进度输出通道（可选）
        session_id: 会话ID（可选，不提供则使用/创建活动会话）
        collaborators: 透传给 ChatRunner 的 provider / mcp_client / shell_executor / mirror

    Returns:
        包含会话ID、回答文本、是否用过工具、轮数与 trace 的字典

    Raises:
        失败时先记录 "Error: ..." 回答和 error trace，再原样抛出
    """
    text = str(prompt or "").strip()
    if not text:
        raise BusinessError(code="EMPTY_PROMPT", message="Prompt is empty.")

    cfg = _resolve_config(config)
    session = store.get_session(session_id) if session_id else store.ensure_active_session()
    if session is None:
        raise BusinessError(code="SESSION_NOT_FOUND", message=f"Session not found: {session_id}", http_status=404)
    store.append_message(session.id, "user", text)

    try:
        latest = store.get_session(session.id)
        if latest is None:
            raise BusinessError(code="SESSION_NOT_FOUND", message="Active session disappeared before completion.")
        messages = build_model_messages(cfg, latest.messages)
        _emit(output, f"session completion request model={cfg.model} messages={len(messages)}")

        result = ChatRunner(cfg, output=output, **collaborators).run(messages)

        store.append_message(session.id, "assistant", result.text)
        store.append_trace_events(session.id, result.trace)
    except Exception as e:
        msg = e.message if isinstance(e, BusinessError) else str(e)
        store.append_message(session.id, "assistant", f"Error: {msg}")
        store.append_trace_events(
            session.id,
            [TraceEvent(timestamp=utc_now_iso(), type="error", summary="Prompt execution failed.", details=msg)],
        )
        _emit(output, f"session completion error: {msg}")
        logger.error(f"Prompt failed: {msg}", extra={"extra": {
            "session_id": session.id,
            "error": msg,
        }})
        raise

    return {
        "session_id": session.id,
        "text": result.text,
        "used_tools": result.used_tools,
        "rounds": result.rounds,
        "trace": [event.to_dict() for event in result.trace],
    }


def list_model_ids(config: Optional[ChatRunnerConfig] = None, provider=None) -> List[str]:
    """列出补全端点上可用的模型 ID。"""
    cfg = _resolve_config(config)
    if not cfg.base_url:
        raise ConfigurationError("joshgpt.baseUrl is empty.")
    client = provider or LmStudioClient(cfg)
    model_ids = client.list_models()
    logger.log(logging.INFO, "Listed models", extra={"extra": {"count": len(model_ids)}})
    return model_ids


def mcp_status(
    config: Optional[ChatRunnerConfig] = None,
    output: Optional[OutputSink] = None,
    client=None,
) -> Dict[str, Any]:
    """探测 MCP 网关。

    Returns:
        {"enabled": bool, "base_url": str, "tools": [工具名...]}
    """
    cfg = _resolve_config(config)
    if not cfg.mcp_enabled:
        return {"enabled": False, "base_url": cfg.mcp_base_url, "tools": []}
    if not cfg.mcp_base_url:
        raise ConfigurationError("joshgpt.mcp.baseUrl is empty.")

    mcp = client or McpHttpClient(cfg.mcp_base_url, timeout_ms=cfg.mcp_timeout_ms, output=output)
    names = [str(t["name"]) for t in mcp.list_tools() if isinstance(t, dict) and t.get("name")]
    _emit(output, f"MCP tools: {', '.join(names) or '<none>'}")
    return {"enabled": True, "base_url": cfg.mcp_base_url, "tools": names}
