"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult / TraceEvent 模型。
- session: 会话记录以及 SessionStore / OutputSink 协作方协议。
- exceptions: 业务异常类型定义。
"""
