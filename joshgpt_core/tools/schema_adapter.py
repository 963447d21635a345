"""工具 schema 适配层。

负责把 MCP 网关的工具描述（name / description / inputSchema）转换成
补全端点的 function-calling 约定，并提供参数解析与结果文本化的辅助函数：

- filter_excluded_tools: 剔除不允许暴露给模型的工具名（不影响网关自身的列表）。
- as_tool_defs / as_openai_tools: ToolDescriptor -> ToolDef -> OpenAI tools JSON。
- parse_tool_arguments: 解析模型给出的参数文本，失败时返回空 dict，从不抛异常。
- stringify_tool_result: 把 tools/call 的结果压平为可回填给模型的文本。
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from .definitions import ToolDef, ToolDescriptor


def to_descriptors(raw_tools: Any) -> List[ToolDescriptor]:
    """把 tools/list 的原始条目转换为 ToolDescriptor，跳过不完整的条目。"""

    if not isinstance(raw_tools, list):
        return []
    descriptors: List[ToolDescriptor] = []
    for raw in raw_tools:
        if isinstance(raw, ToolDescriptor):
            descriptors.append(raw)
            continue
        descriptor = ToolDescriptor.from_mcp(raw)
        if descriptor is not None:
            descriptors.append(descriptor)
    return descriptors


def filter_excluded_tools(
    descriptors: Iterable[ToolDescriptor],
    excluded: Optional[Iterable[str]] = None,
) -> List[ToolDescriptor]:
    blocked = {name for name in (excluded or ()) if name}
    return [d for d in descriptors if d.name not in blocked]


def as_tool_defs(
    raw_tools: Any,
    excluded: Optional[Iterable[str]] = None,
) -> List[ToolDef]:
    """MCP 工具列表 -> 面向模型的 ToolDef 列表（同名只保留第一个）。"""

    seen = set()
    tool_defs: List[ToolDef] = []
    for descriptor in filter_excluded_tools(to_descriptors(raw_tools), excluded):
        if descriptor.name in seen:
            continue
        seen.add(descriptor.name)
        tool_defs.append(
            ToolDef(
                name=descriptor.name,
                description=descriptor.description,
                parameters=descriptor.input_schema,
            )
        )
    return tool_defs


def as_openai_tools(raw_tools: Any, excluded: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
    return [tool.to_openai() for tool in as_tool_defs(raw_tools, excluded)]


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """解析工具调用的 arguments 字段。

    模型通常把 arguments 作为 JSON 字符串返回；空文本、非法 JSON
    或非对象类型一律视为空参数，不会阻断工具执行。
    """

    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def stringify_tool_result(result: Any) -> str:
    """tools/call 结果 -> 文本。

    优先 structuredContent（格式化 JSON），其次 content 中所有 text 块
    （换行拼接），都没有时返回整个结果的 JSON。
    """

    if isinstance(result, dict) and "structuredContent" in result:
        return json.dumps(result["structuredContent"], ensure_ascii=False, indent=2)

    if isinstance(result, dict) and isinstance(result.get("content"), list):
        parts = [
            item["text"]
            for item in result["content"]
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        ]
        parts = [p for p in parts if p]
        if parts:
            return "\n".join(parts)

    return json.dumps(result or {}, ensure_ascii=False, indent=2)
