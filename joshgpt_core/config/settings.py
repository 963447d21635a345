"""配置管理模块。

支持从 .env、config.yaml 以及环境变量（前缀 JOSHGPT_）加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

OPENAI_COMPAT_MODE = "openai-compat"
NATIVE_STREAM_MODE = "lmstudio-native-stream"

DEFAULT_BASE_URL = "http://localhost:1234/v1"
DEFAULT_NATIVE_BASE_URL = "http://localhost:1234"
DEFAULT_MCP_BASE_URL = "http://127.0.0.1:8790/mcp"
# 网关内部使用的执行代理工具，不暴露给模型
DEFAULT_EXCLUDED_MCP_TOOLS = ("run_host_command", "run_container_command")


def normalize_base_url(base_url: Optional[str]) -> str:
    """去掉首尾空白与末尾的斜杠。"""

    return str(base_url or "").strip().rstrip("/")


def infer_native_base_url(base_url: Optional[str]) -> str:
    """由 OpenAI 兼容地址（.../v1）推断原生 API 的根地址。"""

    normalized = normalize_base_url(base_url)
    if not normalized:
        return ""
    for suffix in ("/api/v1", "/api/v0", "/v1"):
        if normalized.endswith(suffix):
            return normalized[: -len(suffix)]
    return normalized


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("JOSHGPT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 补全端点 ----
    base_url: str = Field(default=DEFAULT_BASE_URL, description="OpenAI 兼容端点基础URL（含 /v1）")
    native_base_url: str = Field(default="", description="原生流式端点根地址；为空时由 base_url 推断")
    chat_endpoint_mode: str = Field(
        default=OPENAI_COMPAT_MODE,
        description="openai-compat（支持工具调用）或 lmstudio-native-stream（仅流式文本）",
    )
    model: str = Field(default="", description="模型 ID")
    api_key: str = Field(default="", description="API 密钥，为空时使用 lm-studio")
    system_prompt: str = Field(default="", description="系统提示词")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="生成温度")
    max_tokens: int = Field(default=512, ge=1, description="单次补全最大 token 数")
    http_timeout: float = Field(default=60.0, ge=1.0, description="补全请求 HTTP 超时时间（秒）")

    # ---- MCP 网关 ----
    mcp_enabled: bool = Field(default=True, description="是否启用远程 MCP 工具")
    mcp_base_url: str = Field(default=DEFAULT_MCP_BASE_URL, description="MCP 网关地址")
    mcp_timeout_ms: int = Field(default=15000, ge=100, description="单次 MCP 调用的硬超时（毫秒）")
    mcp_max_tool_rounds: int = Field(default=4, ge=1, description="单轮对话内工具调用最大轮数")
    mcp_excluded_tools: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_MCP_TOOLS),
        description="不暴露给模型的远程工具名",
    )

    # ---- 本地 shell 工具 ----
    local_shell_enabled: bool = Field(default=True, description="是否启用 run_local_shell_command")
    local_shell_default_timeout_seconds: int = Field(default=30, ge=1)
    local_shell_max_timeout_seconds: int = Field(default=300, ge=1)
    local_shell_default_max_output_chars: int = Field(default=12000, ge=256)
    local_shell_max_output_chars: int = Field(default=50000, ge=256)
    local_shell_mirror_enabled: bool = Field(default=True, description="是否把命令输出镜像到输出通道")

    workspace_root: str = Field(
        default_factory=lambda: str(Path.cwd()),
        description="本地命令的默认工作目录",
    )
    storage_root: str = Field(default=".storage", description="会话存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="JOSHGPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("base_url", "native_base_url", "mcp_base_url")
    @classmethod
    def normalize_urls(cls, v: str) -> str:
        return normalize_base_url(v)

    @field_validator("chat_endpoint_mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        mode = str(v or "").strip()
        return NATIVE_STREAM_MODE if mode == NATIVE_STREAM_MODE else OPENAI_COMPAT_MODE

    @field_validator("model", "api_key", "system_prompt")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return str(v or "").strip()

    @property
    def resolved_native_base_url(self) -> str:
        return self.native_base_url or infer_native_base_url(self.base_url) or DEFAULT_NATIVE_BASE_URL

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
