"""
Resilient client for the chat gateway.

``SecureChatClient.chat_completion`` always resolves to a string the UI can
show: the assistant's reply, the server's daily-limit notice, a fixed
content-block message or a fallback. It never raises, except for
``asyncio.CancelledError`` so a caller can abandon an in-flight request
together with its backoff sleep.

One instance is meant to be created at application start and shared by
every conversation of the same user.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from tutor_gateway.errors import DAILY_LIMIT_MESSAGE
from tutor_gateway.log_sanitizer import mask_session_token
from tutor_gateway.logging_config import logger
from tutor_gateway.schemas import ChatMessage, ChatOptions
from tutor_gateway.settings import Settings, settings as default_settings
from tutor_gateway.upstream import extract_reply_text

from .retry import ChatFailure, GatewayCallError, RetryPolicy, error_from_response
from .token_cache import SessionTokenCache

SESSION_INIT_PATH = "/api/session/init"
CHAT_PATH = "/api/chat"
STATS_PATH = "/api/stats/{token}"

DEFAULT_FALLBACK_MESSAGE = (
    "I'm having trouble connecting right now. Please try again in a moment."
)
CONTENT_BLOCKED_MESSAGE = (
    "Let's talk about something else! What are you working on today?"
)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    INITIALIZING = "initializing"
    VALID = "valid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ChatOutcome:
    text: str
    failure: ChatFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


MessageLike = ChatMessage | Mapping[str, Any]
OptionsLike = ChatOptions | Mapping[str, Any] | None


def coerce_messages(messages: Sequence[MessageLike]) -> list[dict[str, Any]]:
    return [
        m.model_dump() if isinstance(m, ChatMessage) else ChatMessage.model_validate(m).model_dump()
        for m in messages
    ]


def coerce_options(options: OptionsLike) -> ChatOptions:
    if options is None:
        return ChatOptions()
    if isinstance(options, ChatOptions):
        return options
    return ChatOptions.model_validate(dict(options))


class SecureChatClient:
    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        policy: RetryPolicy | None = None,
        token_cache: SessionTokenCache | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.policy = policy or RetryPolicy()
        self.token_cache = token_cache or SessionTokenCache()
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._session_lock = asyncio.Lock()
        self._initializing = False

    @classmethod
    def from_settings(cls, cfg: Settings | None = None, **kwargs: Any) -> "SecureChatClient":
        cfg = cfg or default_settings
        kwargs.setdefault(
            "policy",
            RetryPolicy(
                max_attempts=cfg.client_max_attempts,
                backoff_base=cfg.client_backoff_base_seconds,
                backoff_max=cfg.client_backoff_max_seconds,
            ),
        )
        return cls(cfg.gateway_base_url, timeout=cfg.client_timeout_seconds, **kwargs)

    async def __aenter__(self) -> "SecureChatClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    @property
    def state(self) -> SessionState:
        if self._initializing:
            return SessionState.INITIALIZING
        if self.token_cache.get() is not None:
            return SessionState.VALID
        if self.token_cache.has_token:
            return SessionState.EXPIRED
        return SessionState.NO_SESSION

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(
                method, self._url(path), timeout=self.timeout, **kwargs
            )
        except httpx.TimeoutException as exc:
            raise GatewayCallError(ChatFailure.TIMEOUT, "Request timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewayCallError(ChatFailure.NETWORK, str(exc)) from exc

    async def init_session(self) -> str:
        """Request a new session token and cache it until it expires."""
        self._initializing = True
        try:
            resp = await self._request("POST", SESSION_INIT_PATH)
            if resp.status_code != 200:
                raise error_from_response(resp)
            try:
                data = resp.json()
                token = data["token"]
                expires_in = float(data["expiresIn"])
            except (ValueError, KeyError, TypeError) as exc:
                raise GatewayCallError(
                    ChatFailure.SERVER_ERROR,
                    "Malformed session response",
                    status_code=resp.status_code,
                ) from exc
        finally:
            self._initializing = False

        self.token_cache.set(token, expires_in)
        logger.info("client: session initialised token=%s", mask_session_token(token))
        return token

    async def ensure_session(self) -> str:
        token = self.token_cache.get()
        if token is not None:
            return token
        async with self._session_lock:
            # Another caller may have initialised while we waited.
            token = self.token_cache.get()
            if token is not None:
                return token
            return await self.init_session()

    async def _refresh_session(self, stale_token: str) -> str:
        async with self._session_lock:
            current = self.token_cache.get()
            if current is not None and current != stale_token:
                return current
            self.token_cache.clear()
            return await self.init_session()

    async def _post_chat(self, token: str, body: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            CHAT_PATH,
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )
        if resp.status_code < 200 or resp.status_code >= 300:
            raise error_from_response(resp)
        try:
            data = resp.json()
        except ValueError as exc:
            raise GatewayCallError(
                ChatFailure.SERVER_ERROR, "Non-JSON response", status_code=resp.status_code
            ) from exc
        if not isinstance(data, dict):
            raise GatewayCallError(
                ChatFailure.SERVER_ERROR, "Unexpected response", status_code=resp.status_code
            )
        return data

    async def _attempt(self, body: dict[str, Any]) -> dict[str, Any]:
        token = await self.ensure_session()
        try:
            return await self._post_chat(token, body)
        except GatewayCallError as exc:
            if exc.failure is not ChatFailure.UNAUTHORIZED:
                raise
        # One re-initialisation per attempt; a second 401 counts as a failed attempt.
        logger.info("client: session rejected, re-initialising")
        token = await self._refresh_session(token)
        return await self._post_chat(token, body)

    async def request_completion(
        self, messages: Sequence[MessageLike], options: OptionsLike = None
    ) -> ChatOutcome:
        try:
            opts = coerce_options(options)
            body = {
                "messages": coerce_messages(messages),
                "options": opts.model_dump(by_alias=True, exclude_none=True),
            }
        except ValueError:
            logger.warning("client: refusing malformed chat request")
            fallback = options.get("fallbackMessage") if isinstance(options, Mapping) else None
            return ChatOutcome(fallback or DEFAULT_FALLBACK_MESSAGE, ChatFailure.CLIENT_ERROR)

        fallback = opts.fallback_message or DEFAULT_FALLBACK_MESSAGE
        max_attempts = opts.retry_count or self.policy.max_attempts

        last_failure: ChatFailure | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                data = await self._attempt(body)
            except GatewayCallError as exc:
                last_failure = exc.failure
                if exc.failure is ChatFailure.DAILY_LIMIT:
                    return ChatOutcome(exc.message or DAILY_LIMIT_MESSAGE, exc.failure)
                if exc.failure is ChatFailure.CONTENT_BLOCKED:
                    return ChatOutcome(CONTENT_BLOCKED_MESSAGE, exc.failure)

                decision = self.policy.classify(exc, attempt, max_attempts)
                logger.warning(
                    "client: attempt %d/%d failed (%s, status=%s); retry=%s delay=%.1fs",
                    attempt,
                    max_attempts,
                    exc.failure.value,
                    exc.status_code,
                    decision.retry,
                    decision.delay,
                )
                if not decision.retry:
                    break
                await self._sleep(decision.delay)
                continue

            text = extract_reply_text(data)
            if not text:
                return ChatOutcome(fallback, ChatFailure.EMPTY_RESPONSE)
            return ChatOutcome(text)

        logger.error(
            "client: giving up after %d attempt(s), last failure=%s",
            max_attempts,
            last_failure.value if last_failure else "-",
        )
        return ChatOutcome(fallback, last_failure)

    async def chat_completion(
        self, messages: Sequence[MessageLike], options: OptionsLike = None
    ) -> str:
        outcome = await self.request_completion(messages, options)
        return outcome.text

    async def get_usage_stats(self) -> dict[str, Any] | None:
        token = self.token_cache.get()
        if token is None:
            return None
        try:
            resp = await self._request("GET", STATS_PATH.format(token=token))
        except GatewayCallError as exc:
            logger.warning("client: usage stats unavailable (%s)", exc.failure.value)
            return None
        if resp.status_code != 200:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


__all__ = [
    "CONTENT_BLOCKED_MESSAGE",
    "ChatOutcome",
    "DEFAULT_FALLBACK_MESSAGE",
    "SecureChatClient",
    "SessionState",
]
