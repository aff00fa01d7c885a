"""Per-client request quotas for the public auth endpoints (Redis, with in-process fallback)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

RATE_KEY_PREFIX = "catalog:rate"

# key -> (count, window reset timestamp)
_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    # Socket peer first; X-Forwarded-For only when there is none.
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return "unknown"


async def _consume_redis_quota(key: str, window_seconds: int) -> Tuple[int, int]:
    """Increment the shared counter; returns (count, seconds until reset)."""
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        pipe = client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        pipe.ttl(key)
        count, _, ttl = await pipe.execute()
    finally:
        await client.aclose()
    return int(count), max(int(ttl), 1)


async def _consume_local_quota(key: str, window_seconds: int) -> Tuple[int, int]:
    now = time.time()
    async with _local_lock:
        for stale_key in [k for k, (_, reset_at) in _local_counters.items() if reset_at <= now]:
            _local_counters.pop(stale_key, None)
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        count += 1
        _local_counters[key] = (count, reset_at)
    return count, max(int(reset_at - now), 1)


def rate_limit(prefix: str, limit: Optional[int] = None, window_seconds: int = 60) -> Callable[..., None]:
    """
    Dependency factory enforcing `limit` requests per client per window.

    `limit` defaults to AUTH_RATE_LIMIT_PER_MINUTE; zero or negative disables the check.
    """

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return
        quota = int(limit if limit is not None else settings.AUTH_RATE_LIMIT_PER_MINUTE)
        if quota <= 0:
            return

        key = f"{RATE_KEY_PREFIX}:{prefix}:{_client_identifier(request)}"
        try:
            count, retry_after = await _consume_redis_quota(key, window_seconds)
        except Exception as exc:
            logger.debug("Redis quota unavailable for %s, counting locally: %s", prefix, exc)
            count, retry_after = await _consume_local_quota(key, window_seconds)

        if count > quota:
            logger.warning("Rate limit hit for %s by %s", prefix, _client_identifier(request))
            raise HTTPException(
                status_code=429,
                detail="Too many attempts. Try again later.",
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency
