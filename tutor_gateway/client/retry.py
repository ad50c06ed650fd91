"""
Failure taxonomy and retry policy for gateway calls.

``GatewayCallError`` only lives inside the client's retry loop; callers of
``SecureChatClient`` never see it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from tutor_gateway.errors import CODE_CONTENT_BLOCKED, CODE_DAILY_LIMIT


class ChatFailure(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    DAILY_LIMIT = "daily_limit_reached"
    CONTENT_BLOCKED = "content_blocked"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CLIENT_ERROR = "client_error"
    EMPTY_RESPONSE = "empty_response"


# Never retried: repeating the call would burn quota or resend rejected input.
TERMINAL_FAILURES = frozenset({ChatFailure.DAILY_LIMIT, ChatFailure.CONTENT_BLOCKED})

_BACKOFF_FAILURES = frozenset(
    {
        ChatFailure.UNAUTHORIZED,
        ChatFailure.SERVER_ERROR,
        ChatFailure.NETWORK,
        ChatFailure.TIMEOUT,
    }
)


class GatewayCallError(Exception):
    def __init__(
        self,
        failure: ChatFailure,
        message: str = "",
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message or failure.value)
        self.failure = failure
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _retry_after_of(response: httpx.Response, body: dict[str, Any]) -> float | None:
    value = body.get("retryAfter")
    if value is None:
        value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def error_from_response(response: httpx.Response) -> GatewayCallError:
    """Classify a non-2xx gateway response."""
    status_code = response.status_code
    body = _json_body(response)
    message = body.get("error") if isinstance(body.get("error"), str) else ""
    code = body.get("code")

    if status_code == 401:
        failure = ChatFailure.UNAUTHORIZED
    elif status_code == 429:
        failure = ChatFailure.DAILY_LIMIT if code == CODE_DAILY_LIMIT else ChatFailure.RATE_LIMITED
    elif status_code == 400 and (code == CODE_CONTENT_BLOCKED or "reason" in body):
        failure = ChatFailure.CONTENT_BLOCKED
    elif status_code >= 500:
        failure = ChatFailure.SERVER_ERROR
    else:
        failure = ChatFailure.CLIENT_ERROR

    return GatewayCallError(
        failure,
        message,
        status_code=status_code,
        retry_after=_retry_after_of(response, body),
    )


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    default_rate_limit_wait: float = 60.0
    max_rate_limit_wait: float = 60.0

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * 2 ** (attempt - 1), self.backoff_max)

    def rate_limit_delay(self, retry_after: float | None) -> float:
        wait = self.default_rate_limit_wait if retry_after is None else retry_after
        return max(0.0, min(wait, self.max_rate_limit_wait))

    def classify(
        self, error: GatewayCallError, attempt: int, max_attempts: int | None = None
    ) -> RetryDecision:
        """
        Decide whether a failed attempt (1-based) is followed by another one
        and how long to wait before it.
        """
        limit = max_attempts or self.max_attempts
        if error.failure in TERMINAL_FAILURES or attempt >= limit:
            return RetryDecision(retry=False)
        if error.failure is ChatFailure.RATE_LIMITED:
            return RetryDecision(retry=True, delay=self.rate_limit_delay(error.retry_after))
        if error.failure in _BACKOFF_FAILURES:
            return RetryDecision(retry=True, delay=self.backoff_delay(attempt))
        return RetryDecision(retry=False)


__all__ = [
    "ChatFailure",
    "GatewayCallError",
    "RetryDecision",
    "RetryPolicy",
    "TERMINAL_FAILURES",
    "error_from_response",
]
