"""补全端点集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 原生流式 SSE 解码与文本增量提取 (native_stream)。
- OpenAI 兼容 / LM Studio 端点的具体实现 (lmstudio_client)。
"""

from joshgpt_core.config.settings import settings
from joshgpt_core.providers.base import ProviderClient
from joshgpt_core.providers.lmstudio_client import LmStudioClient


def create_provider(config=None) -> ProviderClient:
    """根据配置创建 Provider 实例，默认使用全局 settings。"""

    return LmStudioClient(config if config is not None else settings)


__all__ = ["ProviderClient", "LmStudioClient", "create_provider"]
