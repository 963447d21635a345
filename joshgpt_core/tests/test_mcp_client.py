import json
import time

import httpx
import pytest

from joshgpt_core.domain.exceptions import ConfigurationError, ProtocolError
from joshgpt_core.mcp.client import McpHttpClient


class Sink:
    def __init__(self):
        self.lines = []

    def append_line(self, text):
        self.lines.append(text)


class FakeResponse:
    def __init__(self, status_code=200, body="", headers=None, chunks=None, delay=0.0, error=None, header_delay=0.0):
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self._chunks = chunks if chunks is not None else [body]
        self._delay = delay
        self._error = error
        self.header_delay = header_delay

    def __enter__(self):
        return self

    def __exit__(self, *a):
        return False

    def iter_text(self):
        for chunk in self._chunks:
            if self._error is not None:
                raise self._error
            if self._delay:
                time.sleep(self._delay)
            yield chunk


def rpc(result=None, error=None, request_id=1):
    payload = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return json.dumps(payload)


def install(monkeypatch, responses, calls):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, method, url, json=None, headers=None):
            calls.append({"method": method, "url": url, "json": json, "headers": dict(headers or {})})
            item = responses.pop(0)
            if isinstance(item, Exception):
                raise item
            time.sleep(item.header_delay)
            return item

    monkeypatch.setattr("httpx.Client", Client)


def handshake(session_id="s-1"):
    return [
        FakeResponse(body=rpc({"protocolVersion": "2024-11-05"}), headers={"Mcp-Session-Id": session_id}),
        FakeResponse(status_code=202, body=""),
    ]


def test_initialize_stores_session_and_lists_tools(monkeypatch):
    calls = []
    tools = [{"name": "list_files", "description": "list", "inputSchema": {"type": "object"}}]
    install(monkeypatch, handshake() + [FakeResponse(body=rpc({"tools": tools}, request_id=2))], calls)
    sink = Sink()
    client = McpHttpClient("http://127.0.0.1:8790/mcp/", output=sink)

    assert client.list_tools() == tools
    assert client.session_id == "s-1"
    assert client.initialized is True
    assert "Mcp-Session-Id" not in calls[0]["headers"]
    assert calls[0]["json"]["method"] == "initialize"
    assert calls[0]["json"]["params"]["protocolVersion"] == "2024-11-05"
    assert calls[1]["json"]["method"] == "notifications/initialized"
    assert calls[2]["headers"]["Mcp-Session-Id"] == "s-1"
    assert calls[2]["url"] == "http://127.0.0.1:8790/mcp"
    # 请求 ID 在实例内递增
    assert calls[2]["json"]["id"] > calls[0]["json"]["id"]
    assert any(line.startswith("[joshgpt:mcp]") for line in sink.lines)


def test_sse_body_takes_last_parseable_data_line(monkeypatch):
    calls = []
    sse = "event: message\ndata: not-json\n\ndata: " + rpc({"content": [{"type": "text", "text": "ok"}]}) + "\n\n"
    install(monkeypatch, handshake() + [FakeResponse(body=sse)], calls)
    client = McpHttpClient("http://gw/mcp")

    result = client.call_tool("list_files", {"path": "."})
    assert result == {"content": [{"type": "text", "text": "ok"}]}
    assert calls[2]["json"]["params"] == {"name": "list_files", "arguments": {"path": "."}}


def test_json_rpc_error_member(monkeypatch):
    install(monkeypatch, handshake() + [FakeResponse(body=rpc(error={"code": -32601, "message": "no such tool"}))], [])
    client = McpHttpClient("http://gw/mcp")
    with pytest.raises(ProtocolError) as exc:
        client.call_tool("missing", {})
    assert exc.value.message == "MCP error: no such tool"


def test_http_error_status(monkeypatch):
    install(monkeypatch, [FakeResponse(status_code=500, body="x" * 1000)], [])
    client = McpHttpClient("http://gw/mcp")
    with pytest.raises(ProtocolError) as exc:
        client.list_tools()
    assert exc.value.message == "MCP HTTP 500: " + "x" * 400


def test_missing_session_header_is_uninitialized(monkeypatch):
    install(monkeypatch, [FakeResponse(body=rpc({})), FakeResponse(status_code=202, body="")], [])
    client = McpHttpClient("http://gw/mcp")
    with pytest.raises(ProtocolError) as exc:
        client.list_tools()
    assert exc.value.message == "MCP session is not initialized."


def test_timeout_from_slow_body(monkeypatch):
    install(monkeypatch, [FakeResponse(chunks=["{", "}"], delay=0.05)], [])
    client = McpHttpClient("http://gw/mcp", timeout_ms=10)
    with pytest.raises(ProtocolError) as exc:
        client.initialize()
    assert exc.value.message == "MCP request timed out after 10ms."
    assert client.initialized is False


def test_timeout_is_wall_clock_across_headers_and_body(monkeypatch):
    slow = FakeResponse(chunks=["{", "\"jsonrpc\": \"2.0\"", "}"], delay=0.6, header_delay=0.15)
    install(monkeypatch, [slow], [])
    client = McpHttpClient("http://gw/mcp", timeout_ms=200)
    started = time.monotonic()
    with pytest.raises(ProtocolError) as exc:
        client.initialize()
    elapsed = time.monotonic() - started
    assert exc.value.message == "MCP request timed out after 200ms."
    # 响应头迟到加上慢速响应体，也不能拖过期限太多
    assert elapsed < 0.5


def test_timeout_from_transport(monkeypatch):
    install(monkeypatch, [FakeResponse(body="{}", error=httpx.ReadTimeout("slow"))], [])
    client = McpHttpClient("http://gw/mcp", timeout_ms=250)
    with pytest.raises(ProtocolError) as exc:
        client.initialize()
    assert "timed out after 250ms" in exc.value.message


def test_transport_error(monkeypatch):
    install(monkeypatch, [httpx.ConnectError("refused")], [])
    with pytest.raises(ProtocolError) as exc:
        McpHttpClient("http://gw/mcp").initialize()
    assert exc.value.message.startswith("MCP transport error:")


def test_parse_body_edge_cases():
    with pytest.raises(ProtocolError):
        McpHttpClient.parse_body("")
    with pytest.raises(ProtocolError) as exc:
        McpHttpClient.parse_body("hello")
    assert exc.value.message.startswith("Unexpected MCP response format")
    with pytest.raises(ProtocolError):
        McpHttpClient.parse_body("data: nope\n\n")


def test_empty_base_url():
    with pytest.raises(ConfigurationError):
        McpHttpClient("").initialize()
