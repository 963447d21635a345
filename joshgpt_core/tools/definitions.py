"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将 MCP 网关返回的工具描述暴露给 LLM（ToolDescriptor -> ToolDef）。
- 在编排循环中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ToolDescriptor:
    """MCP 网关 tools/list 返回的单个工具描述。"""

    name: str
    description: str
    input_schema: Dict[str, Any]

    @classmethod
    def from_mcp(cls, raw: Any) -> Optional["ToolDescriptor"]:
        """从 tools/list 的条目构造；缺少 name 或 inputSchema 时返回 None。"""

        if not isinstance(raw, dict):
            return None
        name = raw.get("name")
        schema = raw.get("inputSchema")
        if not name or not isinstance(schema, dict):
            return None
        return cls(name=str(name), description=str(raw.get("description") or ""), input_schema=schema)


@dataclass
class ToolDef:
    """一个可供 LLM 调用的 function 工具定义（parameters 为 JSON Schema）。"""

    name: str
    description: str
    parameters: Dict[str, Any]

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    raw_arguments 保留模型原样返回的参数文本（回填 assistant 消息时使用），
    arguments 为解析后的对象；解析失败时为空 dict。
    """

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = "{}"


@dataclass
class ToolResult:
    """工具执行结果的封装（文本形式），会被转换为 role="tool" 的消息。"""

    call_id: str
    name: str
    content: str
