"""MCP 远程工具网关客户端。"""

from joshgpt_core.mcp.client import McpHttpClient

__all__ = ["McpHttpClient"]
