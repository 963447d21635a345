"""MCP 远程工具网关客户端（Streamable HTTP / JSON-RPC 2.0）。

一个实例对应一个网关会话：

1. 首次调用前执行 initialize 握手，保存网关返回的 Mcp-Session-Id。
2. 之后的 tools/list、tools/call 都通过请求头携带该会话 ID。
3. 响应可能是普通 JSON，也可能是 text/event-stream，取最后一个可解析的 data 行。
4. 每次请求都有硬性的墙钟超时，超时、HTTP 非 2xx、JSON-RPC error
   都会转换为 ProtocolError 抛出，由调用方决定如何恢复。
"""

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import httpx

from joshgpt_core.domain.exceptions import ConfigurationError, ProtocolError
from joshgpt_core.domain.session import OutputSink
from joshgpt_core.infrastructure.logging.logger import log_event
from joshgpt_core.tools.definitions import ToolDescriptor
from joshgpt_core.tools.schema_adapter import to_descriptors

MCP_PROTOCOL_VERSION = "2024-11-05"
SESSION_HEADER = "Mcp-Session-Id"
DEFAULT_TIMEOUT_MS = 15000


class _DeadlineExceeded(Exception):
    """工作线程读取响应体时发现已过期限。"""


class McpHttpClient:
    """MCP 网关客户端。

    状态只有两个：未初始化（session_id 为空）与已初始化。
    会话 ID 只保存在实例上，不存在进程级的共享状态。
    """

    def __init__(
        self,
        base_url: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        output: Optional[OutputSink] = None,
        client_name: str = "joshgpt",
        client_version: str = "0.1.0",
    ):
        self.base_url = str(base_url or "").strip().rstrip("/")
        try:
            self.timeout_ms = int(timeout_ms) if int(timeout_ms) > 0 else DEFAULT_TIMEOUT_MS
        except (TypeError, ValueError):
            self.timeout_ms = DEFAULT_TIMEOUT_MS
        self.output = output
        self.client_name = client_name
        self.client_version = client_version
        self._session_id = ""
        self._initialized = False
        self._request_id = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _log(self, message: str) -> None:
        if self.output is not None:
            self.output.append_line(f"[joshgpt:mcp] {message}")
        log_event(logging.INFO, message, component="mcp", base_url=self.base_url)

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    @staticmethod
    def parse_body(raw_body: Optional[str]) -> Dict[str, Any]:
        """解析网关响应体，兼容 JSON 与 SSE 两种格式。"""

        text = str(raw_body or "").strip()
        if not text:
            raise ProtocolError("MCP response body is empty.")

        if text.startswith("{"):
            try:
                return json.loads(text)
            except json.JSONDecodeError as exc:
                raise ProtocolError(f"Malformed MCP JSON response: {exc}")

        data_lines = [
            line[len("data:"):].strip()
            for line in text.splitlines()
            if line.startswith("data:")
        ]
        if not data_lines:
            raise ProtocolError(f"Unexpected MCP response format: {text[:200]}")

        for candidate in reversed(data_lines):
            if not candidate:
                continue
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

        raise ProtocolError("Unable to parse MCP JSON payload from response.")

    def _post(self, payload: Dict[str, Any], allow_without_session: bool = False) -> Dict[str, Any]:
        if not self.base_url:
            raise ConfigurationError("joshgpt.mcp.baseUrl is empty.")

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        elif not allow_without_session:
            raise ProtocolError("MCP session is not initialized.")

        timeout_s = self.timeout_ms / 1000.0
        deadline = time.monotonic() + timeout_s
        timeout_error = ProtocolError(f"MCP request timed out after {self.timeout_ms}ms.", http_status=504)
        outcome: Dict[str, Any] = {}

        def exchange() -> None:
            try:
                outcome["response"] = self._exchange(payload, headers, timeout_s, deadline)
            except Exception as exc:  # noqa: BLE001 - 交给调用线程转换
                outcome["error"] = exc

        # 墙钟期限由调用线程把守：握手、等待响应头、逐块读取响应体都算在内
        worker = threading.Thread(target=exchange, name="joshgpt-mcp-request", daemon=True)
        worker.start()
        worker.join(timeout=max(0.0, deadline - time.monotonic()))
        if worker.is_alive():
            log_event(logging.WARNING, "MCP request abandoned at deadline", timeout_ms=self.timeout_ms)
            raise timeout_error

        error = outcome.get("error")
        if isinstance(error, (httpx.TimeoutException, _DeadlineExceeded)):
            raise timeout_error
        if isinstance(error, httpx.RequestError):
            raise ProtocolError(f"MCP transport error: {error}")
        if error is not None:
            raise error
        status, body, returned_session = outcome["response"]

        if returned_session:
            self._session_id = returned_session

        if status < 200 or status >= 300:
            raise ProtocolError(f"MCP HTTP {status}: {body[:400]}", http_status=status)

        parsed = self.parse_body(body)
        error = parsed.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProtocolError(f"MCP error: {message or 'Unknown MCP error'}")
        return parsed

    def _exchange(self, payload, headers, timeout_s: float, deadline: float):
        """在工作线程中完成一次 POST，返回 (status, body, session_id)。"""

        with httpx.Client(timeout=timeout_s, trust_env=False) as client:
            with client.stream("POST", self.base_url, json=payload, headers=headers) as resp:
                chunks: List[str] = []
                for chunk in resp.iter_text():
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise _DeadlineExceeded()
                return resp.status_code, "".join(chunks), resp.headers.get(SESSION_HEADER)

    def initialize(self) -> None:
        if self._initialized:
            return

        self._log(f"initialize -> {self.base_url}")
        self._post(
            {
                "jsonrpc": "2.0",
                "id": self._next_id(),
                "method": "initialize",
                "params": {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {
                        "name": self.client_name,
                        "version": self.client_version,
                    },
                },
            },
            allow_without_session=True,
        )

        try:
            self._post({"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}})
        except ProtocolError as exc:
            # 部分网关对通知返回 202 空响应或直接忽略
            log_event(logging.DEBUG, "MCP initialized notification ignored", error=exc.message)

        self._initialized = True

    def list_tools(self) -> List[Dict[str, Any]]:
        self.initialize()
        response = self._post({"jsonrpc": "2.0", "id": self._next_id(), "method": "tools/list", "params": {}})
        result = response.get("result") or {}
        tools = result.get("tools") if isinstance(result, dict) else None
        tools = tools if isinstance(tools, list) else []
        self._log(f"tools/list -> {len(tools)} tool(s)")
        return tools

    def list_tool_descriptors(self) -> List[ToolDescriptor]:
        return to_descriptors(self.list_tools())

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.initialize()
        self._log(f"tools/call -> {name}")
        response = self._post(
            {
                "jsonrpc": "2.0",
                "id": self._next_id(),
                "method": "tools/call",
                "params": {"name": name, "arguments": arguments or {}},
            }
        )
        result = response.get("result")
        return result if isinstance(result, dict) else {}
