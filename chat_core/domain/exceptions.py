"""Transport 层统一业务异常。

Transport 实现只允许抛出 BusinessError 的子类；
错误分类器（engine.errors）依据具体子类映射为 ErrorKind，
编排器再据此生成面向用户的 ErrorState。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"、"STREAM_ERROR"）。
        message: 错误信息（可能是服务端原文，不直接展示给用户）。
        http_status: 对应的 HTTP 状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、url 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def describe(self) -> str:
        return f"{self.code}: {self.message}"


class NetworkError(BusinessError):
    """连接失败、超时、流中途断开等网络层错误。"""


class ApiError(BusinessError):
    """服务端返回非 2xx/429 错误、流内报错，或返回内容无法解析。"""


class RateLimitError(BusinessError):
    """服务端限流（HTTP 429）。

    retry_after 来自 Retry-After 头（秒），只用于提示用户，本库不会自动重试。
    """

    def __init__(self, code: str, message: str, http_status: int = 429, retry_after: Optional[float] = None, **extra):
        super().__init__(code, message, http_status, **extra)
        self.retry_after = retry_after

    def describe(self) -> str:
        if self.retry_after is None:
            return super().describe()
        return f"{self.code}: {self.message} (retry after {self.retry_after:g}s)"
