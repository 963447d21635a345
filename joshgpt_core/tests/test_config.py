import pytest

from joshgpt_core.config.settings import (
    NATIVE_STREAM_MODE,
    OPENAI_COMPAT_MODE,
    Settings,
    infer_native_base_url,
    normalize_base_url,
)
from joshgpt_core.domain.exceptions import ConfigurationError
from joshgpt_core.tasks.config import ChatRunnerConfig


def test_url_helpers():
    assert normalize_base_url(" http://localhost:1234/v1// ") == "http://localhost:1234/v1"
    assert infer_native_base_url("http://localhost:1234/v1/") == "http://localhost:1234"
    assert infer_native_base_url("http://localhost:1234/api/v0") == "http://localhost:1234"
    assert infer_native_base_url("http://gpu-box:8080") == "http://gpu-box:8080"
    assert infer_native_base_url("") == ""


def test_runner_config_normalizes(tmp_path):
    cfg = ChatRunnerConfig(
        base_url="http://localhost:1234/v1/",
        model=" qwen ",
        chat_endpoint_mode="bogus",
        mcp_max_tool_rounds="x",
        workspace_root=str(tmp_path),
    )
    assert cfg.base_url == "http://localhost:1234/v1"
    assert cfg.native_base_url == "http://localhost:1234"
    assert cfg.model == "qwen"
    assert cfg.chat_endpoint_mode == OPENAI_COMPAT_MODE
    assert cfg.max_rounds == 4
    assert cfg.mcp_excluded_tools == ("run_host_command", "run_container_command")
    cfg.validate()


def test_runner_config_validation(tmp_path):
    with pytest.raises(ConfigurationError) as exc:
        ChatRunnerConfig(base_url="", model="qwen").validate()
    assert exc.value.message == "joshgpt.baseUrl is empty."
    with pytest.raises(ConfigurationError):
        ChatRunnerConfig(base_url="http://h/v1", model="").validate()


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("JOSHGPT_CONFIG_FILE", str(tmp_path / "absent.yaml"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JOSHGPT_BASE_URL", "http://gpu-box:1234/v1/")
    monkeypatch.setenv("JOSHGPT_MODEL", "qwen")
    monkeypatch.setenv("JOSHGPT_CHAT_ENDPOINT_MODE", NATIVE_STREAM_MODE)
    monkeypatch.setenv("JOSHGPT_MCP_MAX_TOOL_ROUNDS", "6")
    s = Settings()
    assert s.base_url == "http://gpu-box:1234/v1"
    assert s.resolved_native_base_url == "http://gpu-box:1234"

    cfg = ChatRunnerConfig.from_settings(s)
    assert cfg.is_native_stream is True
    assert cfg.max_rounds == 6
    assert cfg.model == "qwen"


def test_settings_from_yaml(monkeypatch, tmp_path):
    config_file = tmp_path / "joshgpt.yaml"
    config_file.write_text("model: llama\nmcp_enabled: false\nmcp_excluded_tools: [dangerous]\n", encoding="utf-8")
    monkeypatch.setenv("JOSHGPT_CONFIG_FILE", str(config_file))
    monkeypatch.chdir(tmp_path)
    s = Settings()
    assert s.model == "llama"
    assert s.mcp_enabled is False
    assert s.mcp_excluded_tools == ["dangerous"]
