"""工具调用路由。

ToolExecutor 把模型发起的单个 ToolCall 分发到本地 shell 执行器或 MCP 网关，
并把结果统一为 ToolResult。执行失败时抛出 ToolExecutionError，
其 message 已经是可以直接回填给模型的文本。
"""

from typing import Any, Iterable, Optional

from joshgpt_core.domain.exceptions import BusinessError, ToolExecutionError
from .definitions import ToolCall, ToolResult
from .local_shell import LOCAL_SHELL_TOOL_NAME, LocalShellExecutor
from .schema_adapter import stringify_tool_result


LOCAL_FAILURE_PREFIX = "Local shell tool failed: "
REMOTE_FAILURE_PREFIX = "MCP tool call failed: "


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, BusinessError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class ToolExecutor:
    def __init__(
        self,
        mcp_client: Optional[Any] = None,
        shell_executor: Optional[LocalShellExecutor] = None,
        local_tool_name: str = LOCAL_SHELL_TOOL_NAME,
        remote_names: Optional[Iterable[str]] = None,
    ):
        self._mcp = mcp_client
        # 本轮实际暴露给模型的远程工具名；其余名称一律不转发给网关
        self._remote_names = frozenset(remote_names or ())
        self._shell = shell_executor
        self._local_tool_name = local_tool_name

    def is_local(self, name: str) -> bool:
        return self._shell is not None and name == self._local_tool_name

    def execute(self, call: ToolCall) -> ToolResult:
        if self.is_local(call.name):
            return self._execute_local(call)
        return self._execute_remote(call)

    def _execute_local(self, call: ToolCall) -> ToolResult:
        try:
            result = self._shell.execute(call.arguments)
        except Exception as exc:  # noqa: BLE001 - 单次调用失败回填给模型
            raise ToolExecutionError(f"{LOCAL_FAILURE_PREFIX}{_error_text(exc)}", tool_name=call.name) from exc
        return ToolResult(call_id=call.id, name=call.name, content=result.to_json())

    def _execute_remote(self, call: ToolCall) -> ToolResult:
        if self._mcp is None or call.name not in self._remote_names:
            raise ToolExecutionError(
                f"{REMOTE_FAILURE_PREFIX}Tool is not available in this turn: {call.name}",
                tool_name=call.name,
            )
        try:
            result = self._mcp.call_tool(call.name, call.arguments)
        except Exception as exc:  # noqa: BLE001
            raise ToolExecutionError(f"{REMOTE_FAILURE_PREFIX}{_error_text(exc)}", tool_name=call.name) from exc
        return ToolResult(call_id=call.id, name=call.name, content=stringify_tool_result(result))
