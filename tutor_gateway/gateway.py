"""
Host-agnostic chat gateway.

``Gateway.handle_chat`` runs the whole policy pipeline for one chat call and
returns a ``ChatResult`` value instead of raising; HTTP adapters translate
the result into status codes and bodies.

Pipeline, in order:

1. resolve the session (missing or expired -> Unauthorized)
2. touch it (daily cap reached -> DailyLimitReached)
3. rate limit the caller's network identity (-> RateLimited)
4. filter a trailing user message (-> ContentBlocked, upstream never called)
5. forward to the provider with clamped options (-> UpstreamUnavailable)
6. filter the reply, substituting the redirect message when unsafe
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

from . import content_filter
from .log_sanitizer import mask_session_token
from .logging_config import logger
from .rate_limiter import RateLimiter
from .schemas import ChatMessage, ChatOptions
from .session_store import DailyLimitExceeded, SessionNotFound, SessionStore
from .settings import Settings
from .upstream import (
    UpstreamError,
    build_upstream_payload,
    call_upstream,
    extract_reply_text,
    replace_reply_text,
)


@dataclass(frozen=True)
class Ok:
    text: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Unauthorized:
    pass


@dataclass(frozen=True)
class RateLimited:
    retry_after_seconds: int


@dataclass(frozen=True)
class DailyLimitReached:
    retry_after_seconds: int


@dataclass(frozen=True)
class ContentBlocked:
    reason: str


@dataclass(frozen=True)
class UpstreamUnavailable:
    status_code: int | None = None


ChatResult = Union[
    Ok, Unauthorized, RateLimited, DailyLimitReached, ContentBlocked, UpstreamUnavailable
]


class Gateway:
    def __init__(
        self,
        *,
        session_store: SessionStore,
        rate_limiter: RateLimiter,
        http_client: httpx.AsyncClient,
        settings: Settings,
    ) -> None:
        self.session_store = session_store
        self.rate_limiter = rate_limiter
        self.http_client = http_client
        self.settings = settings

    async def handle_chat(
        self,
        token: str | None,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        *,
        client_id: str,
    ) -> ChatResult:
        token_ref = mask_session_token(token)

        if not token or await self.session_store.get(token) is None:
            logger.info("gateway: unauthorized client=%s token=%s", client_id, token_ref)
            return Unauthorized()

        try:
            session = await self.session_store.touch(token)
        except SessionNotFound:
            # Expired between get() and touch().
            logger.info("gateway: session vanished client=%s token=%s", client_id, token_ref)
            return Unauthorized()
        except DailyLimitExceeded as exc:
            logger.warning(
                "gateway: daily limit reached client=%s token=%s daily_usage=%d",
                client_id,
                token_ref,
                exc.session.daily_usage,
            )
            return DailyLimitReached(retry_after_seconds=exc.retry_after_seconds)

        decision = await self.rate_limiter.check(client_id)
        if not decision.allowed:
            logger.warning(
                "gateway: rate limited client=%s token=%s retry_after=%s",
                client_id,
                token_ref,
                decision.retry_after_seconds,
            )
            return RateLimited(retry_after_seconds=decision.retry_after_seconds or 1)

        last = messages[-1] if messages else None
        if last is not None and last.role == "user":
            verdict = content_filter.classify(last.content)
            if not verdict.safe:
                # Never log the flagged content itself.
                logger.warning(
                    "gateway: request blocked client=%s token=%s category=%s",
                    client_id,
                    token_ref,
                    verdict.category,
                )
                return ContentBlocked(reason=verdict.reason or "Request blocked")

        payload = build_upstream_payload(messages, options, self.settings)
        try:
            data = await call_upstream(
                client=self.http_client,
                url=self.settings.upstream_chat_url,
                api_key=self.settings.upstream_api_key,
                payload=payload,
                timeout=self.settings.upstream_timeout,
            )
        except UpstreamError as exc:
            logger.error(
                "gateway: upstream unavailable client=%s token=%s status=%s error=%s",
                client_id,
                token_ref,
                exc.status_code,
                exc,
            )
            return UpstreamUnavailable(status_code=exc.status_code)

        reply = extract_reply_text(data)
        if reply is None:
            logger.warning("gateway: upstream reply without content client=%s", client_id)
            return Ok(text="", payload=data)

        verdict = content_filter.classify(reply)
        if not verdict.safe:
            logger.warning(
                "gateway: filtered model reply client=%s token=%s category=%s",
                client_id,
                token_ref,
                verdict.category,
            )
            reply = content_filter.SAFE_REDIRECT_MESSAGE
            replace_reply_text(data, reply)

        logger.info(
            "gateway: chat ok client=%s token=%s request_count=%d daily_usage=%d",
            client_id,
            token_ref,
            session.request_count,
            session.daily_usage,
        )
        return Ok(text=reply, payload=data)


__all__ = [
    "ChatResult",
    "ContentBlocked",
    "DailyLimitReached",
    "Gateway",
    "Ok",
    "RateLimited",
    "Unauthorized",
    "UpstreamUnavailable",
]
