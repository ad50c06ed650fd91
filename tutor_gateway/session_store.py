"""
Session registry for the chat gateway.

A session is valid while it exists in the store and is younger than the
configured duration. Expired sessions are evicted lazily when looked up and
in bulk by ``sweep()``, which runs on every ``create()`` and from a periodic
background task.

Daily usage is counted per calendar day in a fixed timezone
(USAGE_DAY_TIMEZONE): when a session is used on a different day than the
one its counter belongs to, the counter restarts at zero.
"""

from __future__ import annotations

import asyncio
import datetime
import math
import secrets
import threading
import time
from collections.abc import Callable
from zoneinfo import ZoneInfo

from redis.asyncio import Redis

from .logging_config import logger
from .log_sanitizer import mask_session_token
from .models import Session
from .redis_client import redis_delete, redis_get_json, redis_set_json

TOKEN_BYTES = 32


class SessionNotFound(Exception):
    """The token is unknown or its session has expired."""


class DailyLimitExceeded(Exception):
    """The session has used up its daily allowance of chat calls."""

    def __init__(self, session: Session, retry_after_seconds: int) -> None:
        super().__init__("Daily usage limit reached")
        self.session = session
        self.retry_after_seconds = retry_after_seconds


def generate_session_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


class UsageCalendar:
    """Maps timestamps onto calendar days of one timezone."""

    def __init__(self, timezone_name: str = "UTC") -> None:
        self.tz = ZoneInfo(timezone_name)

    def day_of(self, ts: float) -> str:
        return datetime.datetime.fromtimestamp(ts, tz=self.tz).date().isoformat()

    def seconds_until_next_day(self, ts: float) -> int:
        current = datetime.datetime.fromtimestamp(ts, tz=self.tz)
        next_day = datetime.datetime.combine(
            current.date() + datetime.timedelta(days=1),
            datetime.time.min,
            tzinfo=self.tz,
        )
        return max(1, math.ceil(next_day.timestamp() - ts))


def usage_stats(session: Session, now: float) -> dict[str, int]:
    """Public usage counters of a session; age is reported in whole minutes."""
    return {
        "requestCount": session.request_count,
        "dailyUsage": session.daily_usage,
        "sessionAge": int(session.age_seconds(now) // 60),
    }


def apply_touch(
    session: Session, *, now: float, daily_limit: int, calendar: UsageCalendar
) -> Session:
    """
    Account one chat call against the session, in place.

    Raises DailyLimitExceeded without changing the counters once the
    session has reached ``daily_limit`` calls for the current day.
    """
    today = calendar.day_of(now)
    if session.usage_day != today:
        session.usage_day = today
        session.daily_usage = 0
    if session.daily_usage >= daily_limit:
        raise DailyLimitExceeded(session, calendar.seconds_until_next_day(now))
    session.daily_usage += 1
    session.request_count += 1
    return session


class InMemorySessionStore:
    """
    Process-local store (default backend). The session map is guarded by a
    lock so concurrent touches of one token never lose an increment.
    """

    def __init__(
        self,
        *,
        duration_seconds: float,
        daily_limit: int,
        calendar: UsageCalendar | None = None,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = generate_session_token,
    ) -> None:
        self.duration_seconds = duration_seconds
        self.daily_limit = daily_limit
        self.calendar = calendar or UsageCalendar()
        self._clock = clock
        self._token_factory = token_factory
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _sweep_locked(self, now: float) -> int:
        expired = [
            token
            for token, sess in self._sessions.items()
            if sess.is_expired(now, self.duration_seconds)
        ]
        for token in expired:
            del self._sessions[token]
        return len(expired)

    def _get_locked(self, token: str, now: float) -> Session | None:
        sess = self._sessions.get(token)
        if sess is None:
            return None
        if sess.is_expired(now, self.duration_seconds):
            del self._sessions[token]
            return None
        return sess

    async def create(self) -> Session:
        now = self._clock()
        with self._lock:
            removed = self._sweep_locked(now)
            token = self._token_factory()
            while token in self._sessions:
                token = self._token_factory()
            sess = Session(
                token=token,
                created_at=now,
                usage_day=self.calendar.day_of(now),
            )
            self._sessions[token] = sess
        if removed:
            logger.debug(
                "session_store: swept %d expired sessions on create (%d active)",
                removed,
                len(self),
            )
        return sess.model_copy()

    async def get(self, token: str) -> Session | None:
        with self._lock:
            sess = self._get_locked(token, self._clock())
            return sess.model_copy() if sess else None

    async def touch(self, token: str) -> Session:
        now = self._clock()
        with self._lock:
            sess = self._get_locked(token, now)
            if sess is None:
                raise SessionNotFound(token)
            apply_touch(sess, now=now, daily_limit=self.daily_limit, calendar=self.calendar)
            return sess.model_copy()

    async def stats(self, token: str) -> dict[str, int] | None:
        now = self._clock()
        with self._lock:
            sess = self._get_locked(token, now)
            return usage_stats(sess, now) if sess else None

    async def delete(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    async def sweep(self) -> int:
        with self._lock:
            removed = self._sweep_locked(self._clock())
            active = len(self)
        if removed:
            logger.debug("session_store: swept %d expired sessions (%d active)", removed, active)
        return removed


class RedisSessionStore:
    """
    Sessions stored as JSON under ``session:<token>`` with a TTL equal to the
    remaining lifetime, so Redis performs the expiry sweep itself.

    Touches are serialised per process; across processes the read-modify-write
    may race and lose an increment, which only makes the daily cap slightly
    generous.
    """

    KEY_TEMPLATE = "session:{token}"

    def __init__(
        self,
        redis_client: Redis,
        *,
        duration_seconds: float,
        daily_limit: int,
        calendar: UsageCalendar | None = None,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = generate_session_token,
    ) -> None:
        self.redis = redis_client
        self.duration_seconds = duration_seconds
        self.daily_limit = daily_limit
        self.calendar = calendar or UsageCalendar()
        self._clock = clock
        self._token_factory = token_factory
        self._lock = asyncio.Lock()

    def _key(self, token: str) -> str:
        return self.KEY_TEMPLATE.format(token=token)

    def _remaining_ttl(self, sess: Session, now: float) -> int:
        return math.ceil(self.duration_seconds - sess.age_seconds(now))

    async def _save(self, sess: Session, now: float) -> None:
        ttl = self._remaining_ttl(sess, now)
        if ttl <= 0:
            await redis_delete(self.redis, self._key(sess.token))
            return
        await redis_set_json(
            self.redis, self._key(sess.token), sess.model_dump(), ttl_seconds=ttl
        )

    async def _load(self, token: str, now: float) -> Session | None:
        data = await redis_get_json(self.redis, self._key(token))
        if not isinstance(data, dict):
            return None
        try:
            sess = Session.model_validate(data)
        except ValueError:
            logger.warning(
                "session_store: dropping malformed session %s", mask_session_token(token)
            )
            await redis_delete(self.redis, self._key(token))
            return None
        if sess.is_expired(now, self.duration_seconds):
            await redis_delete(self.redis, self._key(token))
            return None
        return sess

    async def create(self) -> Session:
        now = self._clock()
        token = self._token_factory()
        while await self.redis.exists(self._key(token)):
            token = self._token_factory()
        sess = Session(token=token, created_at=now, usage_day=self.calendar.day_of(now))
        await self._save(sess, now)
        return sess

    async def get(self, token: str) -> Session | None:
        return await self._load(token, self._clock())

    async def touch(self, token: str) -> Session:
        async with self._lock:
            now = self._clock()
            sess = await self._load(token, now)
            if sess is None:
                raise SessionNotFound(token)
            apply_touch(sess, now=now, daily_limit=self.daily_limit, calendar=self.calendar)
            await self._save(sess, now)
            return sess

    async def stats(self, token: str) -> dict[str, int] | None:
        now = self._clock()
        sess = await self._load(token, now)
        return usage_stats(sess, now) if sess else None

    async def delete(self, token: str) -> bool:
        return await redis_delete(self.redis, self._key(token))

    async def sweep(self) -> int:
        # Keys carry their own TTL.
        return 0


SessionStore = InMemorySessionStore | RedisSessionStore


__all__ = [
    "DailyLimitExceeded",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionNotFound",
    "SessionStore",
    "UsageCalendar",
    "apply_touch",
    "generate_session_token",
    "usage_stats",
]
