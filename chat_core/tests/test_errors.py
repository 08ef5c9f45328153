import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.domain.models import ErrorKind
from chat_core.engine.errors import Operation, classify_error


def test_rate_limit_suggests_logging_in():
    err = classify_error(RateLimitError(code="RATE_LIMIT", message="429"))
    assert err.kind is ErrorKind.RATE_LIMITED
    assert "logging in" in err.message
    assert not err.retry_advised
    assert err.detail == "RATE_LIMIT: 429"


def test_network_failures_are_connectivity():
    err = classify_error(NetworkError(code="NETWORK_ERROR", message="dns"))
    assert err.kind is ErrorKind.CONNECTIVITY
    assert err.retry_advised
    raw = classify_error(httpx.ReadTimeout("timed out"))
    assert raw.kind is ErrorKind.CONNECTIVITY


def test_stream_api_error_is_generic():
    err = classify_error(ApiError(code="API_ERROR", message="boom", http_status=500), Operation.STREAM)
    assert err.kind is ErrorKind.GENERIC
    assert "boom" not in err.message
    assert "boom" in err.detail


def test_non_stream_failures_use_connectivity_message():
    err = classify_error(ApiError(code="API_ERROR", message="boom"), Operation.ACTIVE_MODEL)
    assert err.kind is ErrorKind.CONNECTIVITY
    assert "connection" in err.message
    created = classify_error(ValueError("bad"), Operation.CREATE_CONVERSATION)
    assert created.kind is ErrorKind.CONNECTIVITY
    assert created.detail == "ValueError: bad"


def test_rate_limit_wins_for_every_operation():
    for operation in Operation:
        err = classify_error(RateLimitError(code="RATE_LIMIT", message="429"), operation)
        assert err.kind is ErrorKind.RATE_LIMITED


def test_rate_limit_carries_retry_after():
    err = classify_error(RateLimitError(code="RATE_LIMIT", message="429", retry_after=30.0))
    assert err.retry_after == 30.0
    assert err.detail == "RATE_LIMIT: 429 (retry after 30s)"
