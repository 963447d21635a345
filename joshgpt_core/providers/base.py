"""Provider 抽象接口。

编排循环不直接依赖具体端点的 HTTP 细节，而是依赖此协议：

- LmStudioClient 是默认实现（OpenAI 兼容 /chat/completions + 原生流式 /api/v1/chat）。
- 测试中可以用任意实现了同名方法的假对象替换。
"""

from typing import List, Optional, Protocol

from joshgpt_core.domain.models import ChatMessage, ChatRequest, ChatResult, NativeStreamResult
from joshgpt_core.providers.native_stream import EventObserver


class ProviderClient(Protocol):
    """补全端点客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - chat(req): 一次非流式调用，返回统一的 ChatResult（含工具调用）。
    - chat_native_stream(messages, on_event): 原生流式调用，事件按到达顺序回调。
    - list_models(): 端点上可用的模型 ID。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...

    def chat_native_stream(
        self,
        messages: List[ChatMessage],
        on_event: Optional[EventObserver] = None,
    ) -> NativeStreamResult:
        ...

    def list_models(self) -> List[str]:
        ...
