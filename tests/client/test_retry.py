import httpx
import pytest

from tutor_gateway.client.retry import (
    ChatFailure,
    GatewayCallError,
    RetryPolicy,
    error_from_response,
)


def test_backoff_doubles_and_caps():
    policy = RetryPolicy()
    assert [policy.backoff_delay(a) for a in range(1, 7)] == [1, 2, 4, 8, 10, 10]


@pytest.mark.parametrize(
    "failure",
    [ChatFailure.SERVER_ERROR, ChatFailure.NETWORK, ChatFailure.TIMEOUT, ChatFailure.UNAUTHORIZED],
)
def test_transient_failures_back_off(failure):
    policy = RetryPolicy()
    decision = policy.classify(GatewayCallError(failure), attempt=2)
    assert decision.retry is True
    assert decision.delay == 2


def test_rate_limit_waits_for_server_hint():
    policy = RetryPolicy(max_rate_limit_wait=30)
    hinted = policy.classify(GatewayCallError(ChatFailure.RATE_LIMITED, retry_after=7), attempt=1)
    assert hinted.retry and hinted.delay == 7

    default = RetryPolicy().classify(GatewayCallError(ChatFailure.RATE_LIMITED), attempt=1)
    assert default.delay == 60

    capped = policy.classify(GatewayCallError(ChatFailure.RATE_LIMITED, retry_after=600), attempt=1)
    assert capped.delay == 30


@pytest.mark.parametrize(
    "failure",
    [ChatFailure.DAILY_LIMIT, ChatFailure.CONTENT_BLOCKED, ChatFailure.CLIENT_ERROR],
)
def test_non_retryable_failures(failure):
    assert RetryPolicy().classify(GatewayCallError(failure), attempt=1).retry is False


def test_last_attempt_is_never_retried():
    policy = RetryPolicy(max_attempts=3)
    err = GatewayCallError(ChatFailure.SERVER_ERROR)
    assert policy.classify(err, attempt=3).retry is False
    assert policy.classify(err, attempt=3, max_attempts=5).retry is True


@pytest.mark.parametrize(
    ("status", "body", "failure"),
    [
        (401, {"error": "Invalid or expired session"}, ChatFailure.UNAUTHORIZED),
        (429, {"error": "Too many", "retryAfter": 12, "code": "rate_limited"}, ChatFailure.RATE_LIMITED),
        (429, {"error": "Daily usage limit reached.", "code": "daily_limit_reached"}, ChatFailure.DAILY_LIMIT),
        (400, {"error": "Request blocked", "reason": "x", "code": "content_blocked"}, ChatFailure.CONTENT_BLOCKED),
        (400, {"error": "Invalid request format", "code": "invalid_request"}, ChatFailure.CLIENT_ERROR),
        (503, {"error": "AI service temporarily unavailable"}, ChatFailure.SERVER_ERROR),
        (404, {"error": "nope"}, ChatFailure.CLIENT_ERROR),
    ],
)
def test_error_from_response(status, body, failure):
    err = error_from_response(httpx.Response(status, json=body))
    assert err.failure is failure
    assert err.status_code == status
    assert err.message == body["error"]


def test_retry_after_falls_back_to_header():
    resp = httpx.Response(429, json={"error": "slow down"}, headers={"Retry-After": "9"})
    assert error_from_response(resp).retry_after == 9


def test_non_json_error_body():
    err = error_from_response(httpx.Response(502, text="Bad Gateway"))
    assert err.failure is ChatFailure.SERVER_ERROR
    assert err.message == ""
