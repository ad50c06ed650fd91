"""
Fixed-window rate limiting keyed by client identity.

Each client gets a counter and a window end. The first request of a window
opens it, requests are counted until the window ends, and the first request
after the end resets the counter to 1 in one step rather than decaying it.

This is an approximate limiter: a client can spend its whole budget at the
end of one window and again at the start of the next, i.e. up to twice the
configured maximum in a short burst around a boundary.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from redis.asyncio import Redis


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: float
    retry_after_seconds: int | None = None


@dataclass
class RateLimitBucket:
    count: int
    reset_time: float


class InMemoryRateLimiter:
    """
    Single-process limiter (default backend).

    The bucket map is guarded by a lock so the check-and-count step stays
    atomic when the limiter is shared between threads.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

    def _record_locked(self, client_id: str, now: float) -> RateLimitBucket:
        bucket = self._buckets.get(client_id)
        if bucket is None or now > bucket.reset_time:
            bucket = RateLimitBucket(count=1, reset_time=now + self.window_seconds)
            self._buckets[client_id] = bucket
        else:
            bucket.count += 1
        return bucket

    async def check(self, client_id: str) -> RateLimitDecision:
        """
        Decide whether the client may make one more request in the current
        window; an allowed request is counted immediately.
        """
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(client_id)
            if (
                bucket is not None
                and now <= bucket.reset_time
                and bucket.count >= self.max_requests
            ):
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_time=bucket.reset_time,
                    retry_after_seconds=max(1, math.ceil(bucket.reset_time - now)),
                )
            bucket = self._record_locked(client_id, now)
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.max_requests - bucket.count),
                reset_time=bucket.reset_time,
            )

    async def record(self, client_id: str) -> int:
        """Count a request without gating it; returns the new window count."""
        now = self._clock()
        with self._lock:
            return self._record_locked(client_id, now).count

    async def cleanup(self) -> int:
        """Drop buckets whose window has ended; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, b in self._buckets.items() if now > b.reset_time]
            for key in expired:
                del self._buckets[key]
        return len(expired)


class RedisRateLimiter:
    """
    Redis-backed limiter for multi-process deployments.

    INCR is atomic on the server, so concurrent processes share one counter
    per window; the key TTL is the window end.
    """

    KEY_TEMPLATE = "ratelimit:{client_id}"

    def __init__(
        self,
        redis_client: Redis,
        *,
        max_requests: int,
        window_seconds: float,
    ) -> None:
        self.redis = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def _incr(self, client_id: str) -> tuple[int, int]:
        key = self.KEY_TEMPLATE.format(client_id=client_id)
        count = int(await self.redis.incr(key))
        ttl_ms = int(await self.redis.pttl(key))
        if ttl_ms < 0:
            # New window (or a key left without expiry): start the clock now.
            ttl_ms = int(self.window_seconds * 1000)
            await self.redis.pexpire(key, ttl_ms)
        return count, ttl_ms

    async def check(self, client_id: str) -> RateLimitDecision:
        count, ttl_ms = await self._incr(client_id)
        reset_time = time.time() + ttl_ms / 1000
        if count > self.max_requests:
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                retry_after_seconds=max(1, math.ceil(ttl_ms / 1000)),
            )
        return RateLimitDecision(
            allowed=True,
            remaining=self.max_requests - count,
            reset_time=reset_time,
        )

    async def record(self, client_id: str) -> int:
        count, _ = await self._incr(client_id)
        return count

    async def cleanup(self) -> int:
        # Keys expire on their own.
        return 0


RateLimiter = InMemoryRateLimiter | RedisRateLimiter


__all__ = [
    "InMemoryRateLimiter",
    "RateLimitBucket",
    "RateLimitDecision",
    "RateLimiter",
    "RedisRateLimiter",
]
