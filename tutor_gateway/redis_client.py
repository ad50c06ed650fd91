"""
Redis helpers for the shared-state backend.

Only used when STATE_BACKEND=redis: sessions and rate limit buckets then live
in Redis with TTLs so several gateway processes see the same state.
"""

from __future__ import annotations

import json
from typing import Any

from redis.asyncio import Redis

from .settings import settings

_redis_client: Redis | None = None


def get_redis_client(url: str | None = None) -> Redis:
    """
    Return a lazily-created process-wide Redis client; REDIS_URL is used
    unless another URL is given on first call.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(url or settings.redis_url, decode_responses=True)
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def redis_get_json(redis: Redis, key: str) -> Any | None:
    """
    Load a JSON value; returns None on a missing key or malformed payload.
    """
    raw = await redis.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


async def redis_set_json(
    redis: Redis, key: str, value: Any, *, ttl_seconds: int | None = None
) -> None:
    """
    Store a JSON-serialisable value under the given key with optional TTL.
    """
    data = json.dumps(value, ensure_ascii=False)
    if ttl_seconds is not None:
        await redis.set(key, data, ex=ttl_seconds)
    else:
        await redis.set(key, data)


async def redis_delete(redis: Redis, key: str) -> bool:
    """
    Delete a key; returns True when it existed.
    """
    return bool(await redis.delete(key))


__all__ = [
    "close_redis_client",
    "get_redis_client",
    "redis_delete",
    "redis_get_json",
    "redis_set_json",
]
