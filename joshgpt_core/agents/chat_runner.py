"""多轮工具调用编排循环。

一次 run() 对应一轮用户提问（turn）：

1. 原生流式模式：完全绕过工具调用，把流式事件按名称分类写入 trace。
2. 组装本轮可用的工具：本地 shell 工具（启用时总是暴露）+ MCP 网关工具
   （列表失败时只在本轮禁用远程工具，不中断对话）。
3. 最多 max_rounds 轮：请求补全 -> 无工具调用则返回 -> 按顺序执行工具并回填结果。
4. 轮数用尽时返回固定提示文本。
"""

import json
import logging
from typing import Any, Dict, List, Optional

from joshgpt_core.domain.exceptions import BusinessError, ToolExecutionError, ToolListingError
from joshgpt_core.domain.models import ChatMessage, ChatRequest, ChatRunResult, NativeStreamEvent
from joshgpt_core.domain.session import OutputSink
from joshgpt_core.infrastructure.logging.logger import logger
from joshgpt_core.mcp.client import McpHttpClient
from joshgpt_core.providers.base import ProviderClient
from joshgpt_core.providers.lmstudio_client import LmStudioClient
from joshgpt_core.providers.native_stream import classify_event
from joshgpt_core.tasks.config import ChatRunnerConfig
from joshgpt_core.tasks.trace import MAX_DETAIL_CHARS, TraceRecorder, summarize_data
from joshgpt_core.tools.definitions import ToolDef
from joshgpt_core.tools.executor import ToolExecutor
from joshgpt_core.tools.local_shell import LocalShellExecutor, local_shell_tool_def
from joshgpt_core.tools.mirror import LineSinkShellMirror
from joshgpt_core.tools.schema_adapter import as_tool_defs


ROUND_LIMIT_ADVISORY = (
    "Reached tool-call round limit before final response. "
    "Increase joshgpt.mcp.maxToolRounds if needed."
)
NATIVE_EMPTY_TEXT = "Model returned no assistant text. Check trace for stream events."
NATIVE_BYPASS_NOTE = "MCP tool-calling is currently bypassed in lmstudio-native-stream mode."
OUTPUT_PREFIX = "[joshgpt]"


class ChatRunner:
    """编排循环。

    协作者（provider、MCP 客户端、本地执行器、输出通道）都可以显式注入；
    未注入时按配置在 run() 内部创建，实例之间不共享任何会话状态。
    """

    def __init__(
        self,
        config: ChatRunnerConfig,
        provider: Optional[ProviderClient] = None,
        mcp_client: Optional[Any] = None,
        shell_executor: Optional[LocalShellExecutor] = None,
        output: Optional[OutputSink] = None,
        mirror: Optional[Any] = None,
    ):
        self._config = config
        self._provider = provider
        self._mcp_client = mcp_client
        self._shell_executor = shell_executor
        self._output = output
        self._mirror = mirror

    def run(self, messages: List[ChatMessage]) -> ChatRunResult:
        config = self._config
        # 配置错误必须在任何网络请求之前暴露
        config.validate()
        provider = self._provider or LmStudioClient(config)
        trace = TraceRecorder()
        log_ctx = {"model": config.model, "mode": config.chat_endpoint_mode}

        if config.is_native_stream:
            return self._run_native(provider, list(messages), trace, log_ctx)

        tool_defs, executor = self._assemble_tools(trace, log_ctx)
        working = list(messages)
        max_rounds = config.max_rounds
        used_tools = False

        for round_num in range(1, max_rounds + 1):
            trace.add("round", f"Round {round_num}: requesting model completion.", f"message_count={len(working)}")
            self._log(logging.INFO, "Requesting completion", log_ctx, round=round_num, message_count=len(working))
            result = provider.chat(
                ChatRequest(
                    model=config.model,
                    messages=list(working),
                    temperature=config.temperature,
                    max_tokens=config.max_tokens,
                    tools=tool_defs or None,
                    tool_choice="auto" if tool_defs else None,
                )
            )
            tool_calls = result.tool_calls if tool_defs else []
            trace.add("round", f"Round {round_num}: model responded (tool_calls={len(tool_calls)}).")

            if not tool_calls:
                trace.add("final", "Model returned final response without additional tool calls.")
                self._log(logging.INFO, "Turn finished", log_ctx, rounds=round_num, used_tools=used_tools)
                return ChatRunResult(text=result.text, used_tools=used_tools, rounds=round_num, trace=trace.snapshot())

            working.append(
                ChatMessage(role="assistant", content=result.message.content or "", tool_calls=list(tool_calls))
            )
            self._emit(f"model requested {len(tool_calls)} tool call(s)")
            trace.add("tool", f"Round {round_num}: executing {len(tool_calls)} tool call(s).")

            # 严格按模型给出的顺序执行，前一个结果回填后才开始下一个
            for call in tool_calls:
                label = call.name or "<unknown>"
                trace.add("tool", f"Calling tool: {label}", json.dumps(call.arguments, ensure_ascii=False, indent=2))
                self._log(logging.INFO, "Tool call received", log_ctx, tool_name=call.name, tool_call_id=call.id)
                try:
                    content = executor.execute(call).content
                    trace.add("tool", f"Tool result: {label}", content[:MAX_DETAIL_CHARS])
                except ToolExecutionError as exc:
                    content = exc.message
                    trace.add("tool-error", f"Tool failed: {label}", exc.message)
                    self._log(logging.WARNING, "Tool execution failed", log_ctx, tool_name=call.name, error=exc.message)
                used_tools = True
                working.append(ChatMessage(role="tool", content=content, tool_call_id=call.id, name=call.name))

        trace.add("limit", "Stopped after reaching max tool-call rounds.", f"max_rounds={max_rounds}")
        self._log(logging.WARNING, "Reached max tool rounds", log_ctx, max_rounds=max_rounds)
        return ChatRunResult(text=ROUND_LIMIT_ADVISORY, used_tools=True, rounds=max_rounds, trace=trace.snapshot())

    def _assemble_tools(self, trace: TraceRecorder, log_ctx: Dict[str, Any]):
        """返回 (暴露给模型的工具列表, 路由执行器)。"""

        config = self._config
        tool_defs: List[ToolDef] = []
        shell = None
        if config.local_shell_enabled:
            shell = self._shell_executor or LocalShellExecutor.from_config(config, mirror=self._resolve_mirror())
            tool_defs.append(local_shell_tool_def())

        mcp_client = None
        remote_names: List[str] = []
        trace.add(
            "start",
            f"Prompt execution started (mcp={'enabled' if config.mcp_enabled else 'disabled'})",
            f"model={config.model}",
        )
        if config.mcp_enabled:
            client = self._mcp_client or McpHttpClient(
                config.mcp_base_url, timeout_ms=config.mcp_timeout_ms, output=self._output
            )
            try:
                remote = self._list_remote_tools(client)
            except ToolListingError as exc:
                self._emit(f"MCP disabled for this turn: {exc.message}")
                trace.add("mcp", "MCP disabled for this turn.", exc.message)
                self._log(logging.WARNING, "MCP disabled for this turn", log_ctx, error=exc.message)
            else:
                local_names = {tool.name for tool in tool_defs}
                remote = [tool for tool in remote if tool.name not in local_names]
                if remote:
                    trace.add("mcp", f"MCP tools loaded ({len(remote)}).", ", ".join(t.name for t in remote))
                    tool_defs.extend(remote)
                    mcp_client = client
                    remote_names = [t.name for t in remote]
                else:
                    trace.add("mcp", "MCP connected but no tools were returned.")

        executor = ToolExecutor(mcp_client=mcp_client, shell_executor=shell, remote_names=remote_names)
        return tool_defs, executor

    def _list_remote_tools(self, client) -> List[ToolDef]:
        try:
            raw = client.list_tools()
        except Exception as exc:  # noqa: BLE001 - 任何列表失败都只禁用本轮远程工具
            message = exc.message if isinstance(exc, BusinessError) else str(exc) or exc.__class__.__name__
            raise ToolListingError(message) from exc
        return as_tool_defs(raw, self._config.mcp_excluded_tools)

    def _resolve_mirror(self):
        if self._mirror is not None:
            return self._mirror
        if self._config.local_shell_mirror_enabled and self._output is not None:
            return LineSinkShellMirror(self._output)
        return None

    def _run_native(
        self,
        provider: ProviderClient,
        messages: List[ChatMessage],
        trace: TraceRecorder,
        log_ctx: Dict[str, Any],
    ) -> ChatRunResult:
        config = self._config
        trace.add("start", "Prompt execution started (mode=lmstudio-native-stream).", f"model={config.model}")
        if config.mcp_enabled or config.local_shell_enabled:
            trace.add("mcp", NATIVE_BYPASS_NOTE)

        def on_event(event: NativeStreamEvent) -> None:
            name = event.event or "event"
            trace.add(classify_event(name), name, event.delta_text or summarize_data(event.data))

        stream = provider.chat_native_stream(messages, on_event=on_event)
        self._emit(f"native stream completed events={len(stream.events)}")
        trace.add("final", "Native streaming response completed.", f"events={len(stream.events)}")
        self._log(logging.INFO, "Native stream finished", log_ctx, events=len(stream.events))
        return ChatRunResult(
            text=stream.text or NATIVE_EMPTY_TEXT,
            used_tools=False,
            rounds=1,
            trace=trace.snapshot(),
        )

    def _emit(self, text: str) -> None:
        if self._output is not None:
            self._output.append_line(f"{OUTPUT_PREFIX} {text}")

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})


def run_chat_with_tools(
    config: ChatRunnerConfig,
    messages: List[ChatMessage],
    output: Optional[OutputSink] = None,
    **collaborators: Any,
) -> ChatRunResult:
    """函数式入口：provider / mcp_client / shell_executor / mirror 可通过关键字参数注入。"""

    return ChatRunner(config, output=output, **collaborators).run(messages)
