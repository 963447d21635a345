"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 service 层或 UI 层做统一捕获与用户提示。

错误分类（对应编排循环的恢复策略）：

- ConfigurationError: 缺少 base_url / model 等配置，整轮对话直接失败。
- ProtocolError: MCP 网关返回非 2xx、响应格式错误、JSON-RPC error 或超时。
- ToolListingError: 工具列表获取失败，由编排循环在本轮内禁用远程工具。
- ToolExecutionError: 单次工具调用失败，由编排循环转换为错误文本的 tool 消息。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MCP_PROTOCOL_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 tool_name、status 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """补全端点返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """补全端点限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ConfigurationError(ValidationError):
    """缺少必要配置（base_url、model、MCP base_url 等），在任何网络请求之前抛出。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="CONFIG_ERROR", message=message, **extra)


class ToolValidationError(ValidationError):
    """工具参数校验失败，例如 command 为空或 cwd 不存在。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="TOOL_VALIDATION_ERROR", message=message, **extra)


class ProtocolError(BusinessError):
    """MCP 网关协议错误（HTTP、JSON-RPC、超时、响应格式）。"""

    def __init__(self, message: str, http_status: int = 502, **extra):
        super().__init__(code="MCP_PROTOCOL_ERROR", message=message, http_status=http_status, **extra)


class ToolListingError(BusinessError):
    """获取远程工具列表失败。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="MCP_LISTING_ERROR", message=message, **extra)


class ToolExecutionError(BusinessError):
    """单次工具调用失败；message 已是可直接回填给模型的描述文本。"""

    def __init__(self, message: str, tool_name: str = "", **extra):
        super().__init__(code="TOOL_EXECUTION_ERROR", message=message, tool_name=tool_name, **extra)
        self.tool_name = tool_name
