"""统一的对话与结果数据模型。

本模块定义了编排循环与各客户端之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给补全端点的完整请求。
- ChatResult: 从补全端点解析后的统一响应结果。
- TraceEvent: 单轮对话中每一步的结构化追踪事件。
- NativeStreamEvent / NativeStreamResult: 原生流式端点的事件与汇总结果。
- ChatRunResult: 编排循环的最终输出。

补全客户端（LmStudioClient）只依赖这些模型，
并负责在端点的 JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from joshgpt_core.tools.definitions import ToolCall, ToolDef


# LLM 消息角色类型（与 OpenAI 兼容端点的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]

# 追踪事件类型
TraceEventType = Literal[
    "start",
    "mcp",
    "round",
    "tool",
    "tool-error",
    "reasoning",
    "stream",
    "stream-end",
    "final",
    "limit",
    "error",
]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，如 system/user/assistant/tool。
    - content: 纯文本内容。
    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，
      这里保存模型发起的工具调用列表（保持模型给出的顺序）。
    - tool_call_id / name: 当 role 为 "tool" 时，关联发起本次调用的请求与工具名。
    """

    role: Role
    content: str
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    编排循环每一轮都会用完整的工作消息列表生成 ChatRequest；
    tools 为空时不会在请求体中声明任何工具调用能力。
    """

    model: str
    messages: List[ChatMessage]
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    tools: Optional[List["ToolDef"]] = None
    # 仅在 tools 非空时生效
    tool_choice: Optional[Literal["auto", "none", "required"]] = None


@dataclass
class ChatUsage:
    """端点返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（编排循环只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次补全调用的最终结果。

    - model: 请求使用的模型 ID。
    - choices: 一个或多个候选回答。
    - text: 助手文本；没有文本内容时为原始响应的格式化 JSON。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    model: str
    choices: List[ChatChoice]
    text: str = ""
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def message(self) -> ChatMessage:
        if self.choices:
            return self.choices[0].message
        return ChatMessage(role="assistant", content="")

    @property
    def tool_calls(self) -> List["ToolCall"]:
        return [call for call in (self.message.tool_calls or []) if call and call.name]


@dataclass
class TraceEvent:
    """单轮对话中的一条追踪事件，只追加、不修改。"""

    timestamp: str
    type: TraceEventType
    summary: str
    details: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "timestamp": self.timestamp,
            "type": self.type,
            "summary": self.summary,
            "details": self.details,
        }


@dataclass
class NativeStreamEvent:
    """原生流式端点的单个 SSE 事件。

    - event: 事件名（如 "message.delta"、"reasoning.delta"、"done"）。
    - data: JSON 解析后的数据；解析失败时为原始字符串。
    - delta_text: 从该事件提取出的助手文本增量，可能为空。
    - raw: 该帧 data 行拼接后的原始文本。
    """

    event: str
    data: Any = None
    delta_text: str = ""
    raw: str = ""


@dataclass
class NativeStreamResult:
    """原生流式调用的汇总结果。"""

    text: str
    events: List[NativeStreamEvent] = field(default_factory=list)


@dataclass
class ChatRunResult:
    """编排循环的输出：最终文本、是否调用过工具、消耗轮数与完整追踪。"""

    text: str
    used_tools: bool
    rounds: int
    trace: List[TraceEvent] = field(default_factory=list)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
