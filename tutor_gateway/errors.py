from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."
DAILY_LIMIT_MESSAGE = "Daily usage limit reached. Please try again tomorrow."
UPSTREAM_UNAVAILABLE_MESSAGE = "AI service temporarily unavailable"

CODE_RATE_LIMITED = "rate_limited"
CODE_DAILY_LIMIT = "daily_limit_reached"
CODE_CONTENT_BLOCKED = "content_blocked"
CODE_INVALID_REQUEST = "invalid_request"
CODE_UNAUTHORIZED = "unauthorized"
CODE_UPSTREAM_UNAVAILABLE = "upstream_unavailable"


def error_response(
    status_code: int,
    *,
    error: str,
    code: str | None = None,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """
    Build a JSON error body of the form ``{"error": ..., "code": ..., **extra}``.

    ``error`` is the human-readable message the client may show; ``code`` is
    the machine-readable kind the client branches on.
    """
    content: dict[str, Any] = {"error": error}
    if code is not None:
        content["code"] = code
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def unauthorized(message: str = "Invalid or expired session") -> JSONResponse:
    return error_response(
        status.HTTP_401_UNAUTHORIZED, error=message, code=CODE_UNAUTHORIZED
    )


def too_many_requests(
    retry_after_seconds: int, *, code: str = CODE_RATE_LIMITED, message: str = RATE_LIMIT_MESSAGE
) -> JSONResponse:
    return error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        error=message,
        code=code,
        headers={"Retry-After": str(retry_after_seconds)},
        retryAfter=retry_after_seconds,
    )


def daily_limit_reached(retry_after_seconds: int) -> JSONResponse:
    return too_many_requests(
        retry_after_seconds, code=CODE_DAILY_LIMIT, message=DAILY_LIMIT_MESSAGE
    )


def content_blocked(reason: str) -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        error="Request blocked",
        code=CODE_CONTENT_BLOCKED,
        reason=reason,
    )


def invalid_request(message: str = "Invalid request format") -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST, error=message, code=CODE_INVALID_REQUEST
    )


def upstream_unavailable() -> JSONResponse:
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        error=UPSTREAM_UNAVAILABLE_MESSAGE,
        code=CODE_UPSTREAM_UNAVAILABLE,
    )


def not_found(message: str) -> JSONResponse:
    return error_response(status.HTTP_404_NOT_FOUND, error=message)


__all__ = [
    "CODE_CONTENT_BLOCKED",
    "CODE_DAILY_LIMIT",
    "CODE_INVALID_REQUEST",
    "CODE_RATE_LIMITED",
    "CODE_UNAUTHORIZED",
    "CODE_UPSTREAM_UNAVAILABLE",
    "DAILY_LIMIT_MESSAGE",
    "RATE_LIMIT_MESSAGE",
    "UPSTREAM_UNAVAILABLE_MESSAGE",
    "content_blocked",
    "daily_limit_reached",
    "error_response",
    "invalid_request",
    "not_found",
    "too_many_requests",
    "unauthorized",
    "upstream_unavailable",
]
