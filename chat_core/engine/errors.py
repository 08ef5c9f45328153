"""错误分类器：把 Transport 层失败映射为领域错误类型。

纯函数，不做任何重试。不同类型对应不同的用户提示：
- RATE_LIMITED: 提示登录后再试，不建议立即重试；
- CONNECTIVITY: 提示检查网络后重试；
- GENERIC: 安全的兜底提示。
"""

import enum

import httpx

from chat_core.domain.exceptions import BusinessError, NetworkError, RateLimitError
from chat_core.domain.models import ErrorKind, ErrorState


class Operation(enum.Enum):
    """发生失败的编排器操作。"""

    CREATE_CONVERSATION = "create_conversation"
    REFRESH_CONVERSATION = "refresh_conversation"
    ACTIVE_MODEL = "active_model"
    STREAM = "stream"


RATE_LIMITED_MESSAGE = "You've sent too many requests. Please try logging in before sending a message."
GENERIC_MESSAGE = "Something went wrong while generating a response. Please try again later."
NO_MODEL_MESSAGE = "No model is available yet. Please reset the conversation and try again."

# 非流式操作的失败在客户端一律按连接问题提示
CONNECTIVITY_MESSAGES = {
    Operation.CREATE_CONVERSATION: "Something's wrong. Check your internet connection and try again.",
    Operation.REFRESH_CONVERSATION: "Uh oh, something's not right! Please check your connection and try again later.",
    Operation.ACTIVE_MODEL: "Hmm, that didn't go as planned. Please check your connection and try again.",
    Operation.STREAM: "Connection lost while generating. Please check your connection and try again.",
}


def _detail(exc: BaseException) -> str:
    if isinstance(exc, BusinessError):
        return exc.describe()
    return f"{type(exc).__name__}: {exc}"


def classify_error(exc: BaseException, operation: Operation = Operation.STREAM) -> ErrorState:
    """把异常映射为 ErrorState。"""

    detail = _detail(exc)
    if isinstance(exc, RateLimitError):
        return ErrorState(
            kind=ErrorKind.RATE_LIMITED,
            message=RATE_LIMITED_MESSAGE,
            detail=detail,
            retry_after=exc.retry_after,
        )
    if isinstance(exc, (NetworkError, httpx.TransportError)):
        return ErrorState(kind=ErrorKind.CONNECTIVITY, message=CONNECTIVITY_MESSAGES[operation], detail=detail)
    if operation is Operation.STREAM:
        return ErrorState(kind=ErrorKind.GENERIC, message=GENERIC_MESSAGE, detail=detail)
    return ErrorState(kind=ErrorKind.CONNECTIVITY, message=CONNECTIVITY_MESSAGES[operation], detail=detail)


def missing_model_error() -> ErrorState:
    return ErrorState(kind=ErrorKind.GENERIC, message=NO_MODEL_MESSAGE, detail="NO_ACTIVE_MODEL")
