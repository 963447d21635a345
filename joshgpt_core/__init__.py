"""JoshGPT Core 顶层包。

该包提供客户端侧的多轮工具调用编排能力：
配置加载、领域模型、补全端点适配（含原生流式）、MCP 网关客户端、
本地 shell 工具、编排循环与会话持久化。
"""

from joshgpt_core.agents.chat_runner import ChatRunner, run_chat_with_tools
from joshgpt_core.tasks import ChatRunnerConfig

__all__ = ["ChatRunner", "ChatRunnerConfig", "run_chat_with_tools"]
