import json

from joshgpt_core.tools.definitions import ToolDescriptor
from joshgpt_core.tools.schema_adapter import (
    as_openai_tools,
    as_tool_defs,
    filter_excluded_tools,
    parse_tool_arguments,
    stringify_tool_result,
    to_descriptors,
)


SCHEMA = {"type": "object", "properties": {"path": {"type": "string"}}}


def test_excluded_tools_removed_before_exposure():
    raw = [
        {"name": "run_host_command", "description": "host", "inputSchema": SCHEMA},
        {"name": "run_container_command", "description": "container", "inputSchema": SCHEMA},
        {"name": "list_files", "description": "list", "inputSchema": SCHEMA},
    ]
    tools = as_openai_tools(raw, ("run_host_command", "run_container_command"))
    assert [t["function"]["name"] for t in tools] == ["list_files"]
    assert tools[0] == {
        "type": "function",
        "function": {"name": "list_files", "description": "list", "parameters": SCHEMA},
    }


def test_incomplete_and_duplicate_entries_skipped():
    raw = [
        {"name": "", "inputSchema": SCHEMA},
        {"name": "no_schema"},
        "garbage",
        {"name": "list_files", "inputSchema": SCHEMA},
        {"name": "list_files", "description": "second", "inputSchema": SCHEMA},
    ]
    assert [d.name for d in to_descriptors(raw)] == ["list_files", "list_files"]
    defs = as_tool_defs(raw)
    assert len(defs) == 1
    assert defs[0].description == ""
    assert to_descriptors(None) == []


def test_filter_excluded_tools_keeps_order():
    descriptors = [ToolDescriptor(name=n, description="", input_schema=SCHEMA) for n in ("a", "b", "c")]
    assert [d.name for d in filter_excluded_tools(descriptors, ["b"])] == ["a", "c"]
    assert [d.name for d in filter_excluded_tools(descriptors)] == ["a", "b", "c"]


def test_parse_tool_arguments():
    assert parse_tool_arguments("{\"path\": \"src\"}") == {"path": "src"}
    assert parse_tool_arguments("") == {}
    assert parse_tool_arguments("   ") == {}
    assert parse_tool_arguments("{broken") == {}
    assert parse_tool_arguments("[1, 2]") == {}
    assert parse_tool_arguments(None) == {}
    assert parse_tool_arguments({"a": 1}) == {"a": 1}


def test_stringify_tool_result_preference_order():
    structured = {"structuredContent": {"files": ["a"]}, "content": [{"type": "text", "text": "ignored"}]}
    assert json.loads(stringify_tool_result(structured)) == {"files": ["a"]}

    text_blocks = {"content": [{"type": "text", "text": "one"}, {"type": "image"}, {"type": "text", "text": "two"}]}
    assert stringify_tool_result(text_blocks) == "one\ntwo"

    other = {"content": [{"type": "image", "data": "..."}]}
    assert json.loads(stringify_tool_result(other)) == other
    assert stringify_tool_result(None) == "{}"
