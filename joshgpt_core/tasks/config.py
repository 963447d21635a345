"""Turn-scoped configuration models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from joshgpt_core.config.settings import (
    DEFAULT_EXCLUDED_MCP_TOOLS,
    DEFAULT_MCP_BASE_URL,
    NATIVE_STREAM_MODE,
    OPENAI_COMPAT_MODE,
    infer_native_base_url,
    normalize_base_url,
)
from joshgpt_core.domain.exceptions import ConfigurationError


DEFAULT_MAX_TOOL_ROUNDS = 4


@dataclass
class ChatRunnerConfig:
    """编排循环单轮对话使用的配置快照。

    Attributes:
        base_url: OpenAI 兼容端点地址（.../v1）。
        model: 模型 ID，必填。
        chat_endpoint_mode: openai-compat 或 lmstudio-native-stream。
        mcp_max_tool_rounds: 工具调用最大轮数，最小为 1。
        mcp_excluded_tools: 从远程工具列表中剔除、不暴露给模型的工具名。
        workspace_root: 本地命令相对路径的解析根目录。
    """

    base_url: str
    model: str
    native_base_url: str = ""
    chat_endpoint_mode: str = OPENAI_COMPAT_MODE
    api_key: str = ""
    system_prompt: str = ""
    temperature: float = 0.2
    max_tokens: Optional[int] = 512
    http_timeout: float = 60.0
    mcp_enabled: bool = True
    mcp_base_url: str = DEFAULT_MCP_BASE_URL
    mcp_timeout_ms: int = 15000
    mcp_max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    mcp_excluded_tools: Tuple[str, ...] = DEFAULT_EXCLUDED_MCP_TOOLS
    local_shell_enabled: bool = True
    local_shell_default_timeout_seconds: int = 30
    local_shell_max_timeout_seconds: int = 300
    local_shell_default_max_output_chars: int = 12000
    local_shell_max_output_chars: int = 50000
    local_shell_mirror_enabled: bool = False
    workspace_root: str = field(default_factory=lambda: str(Path.cwd()))

    def __post_init__(self) -> None:
        self.base_url = normalize_base_url(self.base_url)
        self.native_base_url = normalize_base_url(self.native_base_url) or infer_native_base_url(self.base_url)
        self.mcp_base_url = normalize_base_url(self.mcp_base_url)
        self.model = str(self.model or "").strip()
        if self.chat_endpoint_mode != NATIVE_STREAM_MODE:
            self.chat_endpoint_mode = OPENAI_COMPAT_MODE
        self.mcp_excluded_tools = tuple(self.mcp_excluded_tools or ())

    @property
    def is_native_stream(self) -> bool:
        return self.chat_endpoint_mode == NATIVE_STREAM_MODE

    @property
    def max_rounds(self) -> int:
        """工具调用轮数，非法值回落到默认 4，且至少为 1。"""

        try:
            rounds = int(self.mcp_max_tool_rounds)
        except (TypeError, ValueError):
            return DEFAULT_MAX_TOOL_ROUNDS
        return max(1, rounds)

    def validate(self) -> None:
        """在任何网络请求之前校验必填项。"""

        if not self.base_url:
            raise ConfigurationError("joshgpt.baseUrl is empty.")
        if not self.model:
            raise ConfigurationError("joshgpt.model is empty.")
        if self.is_native_stream and not self.native_base_url:
            raise ConfigurationError("joshgpt.nativeBaseUrl is empty.")

    @classmethod
    def from_settings(cls, settings) -> "ChatRunnerConfig":
        return cls(
            base_url=settings.base_url,
            model=settings.model,
            native_base_url=settings.resolved_native_base_url,
            chat_endpoint_mode=settings.chat_endpoint_mode,
            api_key=settings.api_key,
            system_prompt=settings.system_prompt,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            http_timeout=settings.http_timeout,
            mcp_enabled=settings.mcp_enabled,
            mcp_base_url=settings.mcp_base_url,
            mcp_timeout_ms=settings.mcp_timeout_ms,
            mcp_max_tool_rounds=settings.mcp_max_tool_rounds,
            mcp_excluded_tools=tuple(settings.mcp_excluded_tools),
            local_shell_enabled=settings.local_shell_enabled,
            local_shell_default_timeout_seconds=settings.local_shell_default_timeout_seconds,
            local_shell_max_timeout_seconds=settings.local_shell_max_timeout_seconds,
            local_shell_default_max_output_chars=settings.local_shell_default_max_output_chars,
            local_shell_max_output_chars=settings.local_shell_max_output_chars,
            local_shell_mirror_enabled=settings.local_shell_mirror_enabled,
            workspace_root=settings.workspace_root,
        )
