import asyncio
import json
from typing import Any

import httpx
import pytest

from tutor_gateway.client import (
    ChatFailure,
    RetryPolicy,
    SecureChatClient,
    SessionState,
    SessionTokenCache,
)
from tutor_gateway.client.secure_client import (
    CONTENT_BLOCKED_MESSAGE,
    DEFAULT_FALLBACK_MESSAGE,
)
from tutor_gateway.routes import create_app
from tutor_gateway.settings import Settings

BASE_URL = "http://gateway.test"


class FakeGateway:
    """
    MockTransport handler emulating the gateway. ``chat_responses`` is a
    queue of (status, body) pairs; the last one repeats once exhausted.
    """

    def __init__(self, chat_responses: list[tuple[int, Any]] | None = None) -> None:
        self.chat_responses = chat_responses or [(200, _reply("Hello!"))]
        self.init_calls = 0
        self.chat_calls: list[dict[str, Any]] = []
        self.chat_tokens: list[str] = []
        self.chat_error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/session/init":
            self.init_calls += 1
            return httpx.Response(
                200, json={"token": f"token-{self.init_calls:02d}-abcdef", "expiresIn": 1800}
            )
        if request.url.path == "/api/chat":
            self.chat_calls.append(json.loads(request.content))
            self.chat_tokens.append(request.headers["Authorization"].removeprefix("Bearer "))
            if self.chat_error is not None:
                raise self.chat_error
            index = min(len(self.chat_calls), len(self.chat_responses)) - 1
            status, body = self.chat_responses[index]
            return httpx.Response(status, json=body)
        if request.url.path.startswith("/api/stats/"):
            return httpx.Response(200, json={"requestCount": 1, "dailyUsage": 1, "sessionAge": 0})
        return httpx.Response(404, json={"error": "not found"})


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _reply(text: str | None) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def _client(gateway: FakeGateway, sleep: RecordingSleep, **kwargs) -> SecureChatClient:
    return SecureChatClient(
        BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
        sleep=sleep,
        **kwargs,
    )


USER_HI = [{"role": "user", "content": "Hi there!"}]


@pytest.mark.asyncio
async def test_success_initialises_once_and_reuses_token():
    gateway, sleep = FakeGateway(), RecordingSleep()
    client = _client(gateway, sleep)
    assert client.state is SessionState.NO_SESSION

    assert await client.chat_completion(USER_HI) == "Hello!"
    assert await client.chat_completion(USER_HI) == "Hello!"

    assert gateway.init_calls == 1
    assert gateway.chat_tokens == ["token-01-abcdef", "token-01-abcdef"]
    assert client.state is SessionState.VALID
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_all_server_errors_resolve_to_fallback_string():
    gateway = FakeGateway([(500, {"error": "AI service temporarily unavailable"})])
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    text = await client.chat_completion(USER_HI)

    assert text == DEFAULT_FALLBACK_MESSAGE
    assert len(gateway.chat_calls) == 3
    assert sleep.delays == [1, 2]


@pytest.mark.asyncio
async def test_caller_fallback_and_retry_count_are_honoured():
    gateway = FakeGateway([(503, {"error": "down"})])
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    outcome = await client.request_completion(
        USER_HI, {"retryCount": 2, "fallbackMessage": "Let's try again soon!"}
    )

    assert outcome.text == "Let's try again soon!"
    assert outcome.failure is ChatFailure.SERVER_ERROR
    assert len(gateway.chat_calls) == 2
    assert gateway.chat_calls[0]["options"] == {
        "retryCount": 2,
        "fallbackMessage": "Let's try again soon!",
    }


@pytest.mark.asyncio
async def test_unauthorized_reinitialises_exactly_once():
    gateway = FakeGateway(
        [(401, {"error": "Invalid or expired session"}), (200, _reply("Welcome back!"))]
    )
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    text = await client.chat_completion(USER_HI)

    assert text == "Welcome back!"
    assert gateway.init_calls == 2
    assert gateway.chat_tokens == ["token-01-abcdef", "token-02-abcdef"]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_rate_limit_waits_for_retry_after():
    gateway = FakeGateway(
        [
            (429, {"error": "Too many requests", "retryAfter": 5, "code": "rate_limited"}),
            (200, _reply("Done waiting")),
        ]
    )
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    assert await client.chat_completion(USER_HI) == "Done waiting"
    assert sleep.delays == [5]


@pytest.mark.asyncio
async def test_rate_limit_without_hint_waits_default():
    gateway = FakeGateway([(429, {"error": "Too many requests"}), (200, _reply("ok"))])
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    assert await client.chat_completion(USER_HI) == "ok"
    assert sleep.delays == [60]


@pytest.mark.asyncio
async def test_daily_limit_is_surfaced_verbatim_and_not_retried():
    message = "Daily usage limit reached. Please try again tomorrow."
    gateway = FakeGateway(
        [(429, {"error": message, "retryAfter": 3600, "code": "daily_limit_reached"})]
    )
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    outcome = await client.request_completion(USER_HI, {"fallbackMessage": "nope"})

    assert outcome.text == message
    assert outcome.failure is ChatFailure.DAILY_LIMIT
    assert len(gateway.chat_calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_content_block_is_not_retried():
    gateway = FakeGateway(
        [(400, {"error": "Request blocked", "reason": "violence", "code": "content_blocked"})]
    )
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    outcome = await client.request_completion([{"role": "user", "content": "bad words"}])

    assert outcome.text == CONTENT_BLOCKED_MESSAGE
    assert outcome.failure is ChatFailure.CONTENT_BLOCKED
    assert len(gateway.chat_calls) == 1


@pytest.mark.asyncio
async def test_other_client_errors_fail_immediately():
    gateway = FakeGateway([(400, {"error": "Invalid request format", "code": "invalid_request"})])
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    outcome = await client.request_completion(USER_HI)

    assert outcome.text == DEFAULT_FALLBACK_MESSAGE
    assert outcome.failure is ChatFailure.CLIENT_ERROR
    assert len(gateway.chat_calls) == 1


@pytest.mark.asyncio
async def test_network_errors_are_retried_then_collapsed():
    gateway = FakeGateway()
    gateway.chat_error = httpx.ConnectError("connection refused")
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    outcome = await client.request_completion(USER_HI)

    assert outcome.text == DEFAULT_FALLBACK_MESSAGE
    assert outcome.failure is ChatFailure.NETWORK
    assert len(gateway.chat_calls) == 3


@pytest.mark.asyncio
async def test_timeouts_are_retried_then_collapsed():
    gateway = FakeGateway()
    gateway.chat_error = httpx.ReadTimeout("timed out")
    sleep = RecordingSleep()
    client = _client(gateway, sleep)

    outcome = await client.request_completion(USER_HI, {"fallbackMessage": "Try again soon!"})

    assert outcome.text == "Try again soon!"
    assert outcome.failure is ChatFailure.TIMEOUT
    assert len(gateway.chat_calls) == 3
    assert sleep.delays == [1, 2]


@pytest.mark.asyncio
async def test_empty_reply_uses_fallback():
    gateway = FakeGateway([(200, _reply(""))])
    client = _client(gateway, RecordingSleep())

    outcome = await client.request_completion(USER_HI, {"fallbackMessage": "Hmm, say that again?"})
    assert outcome.text == "Hmm, say that again?"
    assert outcome.failure is ChatFailure.EMPTY_RESPONSE


@pytest.mark.asyncio
async def test_malformed_messages_do_not_raise():
    gateway = FakeGateway()
    client = _client(gateway, RecordingSleep())

    outcome = await client.request_completion([{"role": "robot", "content": "beep"}])
    assert outcome.text == DEFAULT_FALLBACK_MESSAGE
    assert outcome.failure is ChatFailure.CLIENT_ERROR
    assert gateway.chat_calls == []


@pytest.mark.asyncio
async def test_cancellation_propagates_from_backoff_sleep():
    gateway = FakeGateway([(500, {"error": "down"})])

    async def cancelled_sleep(delay: float) -> None:
        raise asyncio.CancelledError()

    client = SecureChatClient(
        BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
        sleep=cancelled_sleep,
    )
    with pytest.raises(asyncio.CancelledError):
        await client.chat_completion(USER_HI)
    assert len(gateway.chat_calls) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_initialisation():
    gateway = FakeGateway()
    client = _client(gateway, RecordingSleep())

    tokens = await asyncio.gather(*(client.ensure_session() for _ in range(10)))

    assert set(tokens) == {"token-01-abcdef"}
    assert gateway.init_calls == 1


@pytest.mark.asyncio
async def test_expired_token_triggers_new_session(clock):
    gateway = FakeGateway()
    cache = SessionTokenCache(clock=clock)
    client = _client(gateway, RecordingSleep(), token_cache=cache)

    await client.chat_completion(USER_HI)
    clock.advance(1800)
    assert client.state is SessionState.EXPIRED

    await client.chat_completion(USER_HI)
    assert gateway.init_calls == 2
    assert gateway.chat_tokens[-1] == "token-02-abcdef"


@pytest.mark.asyncio
async def test_usage_stats():
    gateway = FakeGateway()
    client = _client(gateway, RecordingSleep())

    assert await client.get_usage_stats() is None
    await client.ensure_session()
    assert await client.get_usage_stats() == {
        "requestCount": 1,
        "dailyUsage": 1,
        "sessionAge": 0,
    }


def test_from_settings_uses_client_configuration():
    cfg = Settings(
        gateway_base_url="http://tutor.local:3001/",
        client_timeout_seconds=12,
        client_max_attempts=5,
        client_backoff_base_seconds=0.5,
        client_backoff_max_seconds=4,
    )
    client = SecureChatClient.from_settings(cfg)
    assert client.base_url == "http://tutor.local:3001"
    assert client.timeout == 12
    assert client.policy == RetryPolicy(max_attempts=5, backoff_base=0.5, backoff_max=4)


@pytest.mark.asyncio
async def test_end_to_end_against_gateway_app():
    def upstream(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        question = body["messages"][-1]["content"]
        return httpx.Response(200, json=_reply(f"You asked: {question}"))

    app = create_app(
        Settings(upstream_api_key="sk-test", session_sweep_interval_seconds=0),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
    )
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
    client = SecureChatClient(BASE_URL, http_client=http, sleep=RecordingSleep())

    assert await client.chat_completion(USER_HI) == "You asked: Hi there!"

    blocked = await client.request_completion([{"role": "user", "content": "I hate school"}])
    assert blocked.failure is ChatFailure.CONTENT_BLOCKED

    stats = await client.get_usage_stats()
    assert stats["requestCount"] == 2
    await http.aclose()
