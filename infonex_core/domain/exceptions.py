"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 API 层统一捕获并转换为用户可读的致歉消息。

分三类：
- ProviderError 及子类：模型调用失败，对当前轮次是致命的，不在核心内重试。
- ToolFailure 及子类：工具失败，只在 ToolExecutor 内部出现，
  会被转换成 tool 消息交还给模型，永远不会逃出编排器。
- 编排层错误：RoundLimitExceeded / TurnCancelled。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、trace_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数、请求体或配置校验失败。"""


class StoreError(BusinessError):
    """会话存储或文件存储读写失败。"""


# ---- Provider ----


class ProviderError(BusinessError):
    """Provider 调用失败的基类。"""


class AuthError(ProviderError):
    """凭据缺失或无效，不重试。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="AUTH_ERROR", message=message, http_status=401, **extra)


class RateLimited(ProviderError):
    """Provider 限流，交给调用方决定是否退避重试。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="RATE_LIMIT", message=message, http_status=429, **extra)


class EmptyResponse(ProviderError):
    """Provider 既没有返回文本也没有返回工具调用。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="EMPTY_RESPONSE", message=message, http_status=502, **extra)


class TransportError(ProviderError):
    """网络层错误，例如连接失败、超时等。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="NETWORK_ERROR", message=message, http_status=503, **extra)


class ApiError(ProviderError):
    """Provider 返回了其他非 2xx 状态码。"""


# ---- Tool ----


class ToolFailure(BusinessError):
    """工具执行失败。由 ToolExecutor 吸收为错误文本。"""

    def __init__(self, message: str, code: str = "TOOL_FAILURE", **extra):
        super().__init__(code=code, message=message, http_status=500, **extra)


class MalformedToolArguments(ToolFailure):
    """工具调用的 arguments 不是合法 JSON 对象。"""

    def __init__(self, message: str, **extra):
        super().__init__(message, code="MALFORMED_TOOL_ARGUMENTS", **extra)


class ToolNotFound(ToolFailure):
    """请求了未注册的工具。"""

    def __init__(self, message: str, **extra):
        super().__init__(message, code="TOOL_NOT_FOUND", **extra)


# ---- Orchestrator ----


class RoundLimitExceeded(BusinessError):
    """工具调用轮数达到上限，本轮对话终止。"""

    def __init__(self, message: str, rounds_used: int, **extra):
        super().__init__(code="ROUND_LIMIT_EXCEEDED", message=message, http_status=500, **extra)
        self.rounds_used = rounds_used


class TurnCancelled(BusinessError):
    """调用方通过取消信号终止了本轮对话。"""

    def __init__(self, message: str = "Turn cancelled", **extra):
        super().__init__(code="TURN_CANCELLED", message=message, http_status=499, **extra)
