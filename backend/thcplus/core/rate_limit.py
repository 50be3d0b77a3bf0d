from __future__ import annotations

import logging
import math
import secrets
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, DefaultDict, Deque, Iterable

from fastapi import HTTPException, Request, status

from thcplus.core.config import settings
from thcplus.core.redis_client import get_redis
from thcplus.core.request_meta import resolve_client_ip
from thcplus.core.security import hash_ip_address

WindowBucket = Deque[float]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float
    error: str | None = None


ALLOW_ALL = RateLimitResult(success=True, limit=0, remaining=0, reset=0)


class SlidingWindowLimiter:
    """
    Sliding-window limiter counting hits in the trailing `window_seconds`.

    Each limiter owns a namespace so several limiters can share one backend
    without colliding on keys. Identifiers must already be privacy-safe
    (hashed IPs); the limiter does no hashing of its own.
    """

    def __init__(self, name: str, limit: int, window_seconds: int) -> None:
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = f"@ratelimit/{name}"
        self.buckets: DefaultDict[str, WindowBucket] = defaultdict(deque)

    def key_for(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"


contact_form_rate_limit = SlidingWindowLimiter("contact-form", 3, 60 * 60)
age_verification_rate_limit = SlidingWindowLimiter("age-verification", 10, 60 * 60)
api_rate_limit = SlidingWindowLimiter("api", 100, 15 * 60)


def _prune(bucket: WindowBucket, now: float, window_seconds: int) -> None:
    while bucket and now - bucket[0] >= window_seconds:
        bucket.popleft()


def _hit_memory(bucket: WindowBucket, limit: int, window_seconds: int, now: float) -> RateLimitResult:
    _prune(bucket, now, window_seconds)
    if len(bucket) >= limit:
        return RateLimitResult(success=False, limit=limit, remaining=0, reset=bucket[0] + window_seconds)
    bucket.append(now)
    return RateLimitResult(success=True, limit=limit, remaining=limit - len(bucket), reset=bucket[0] + window_seconds)


async def _hit_redis(client: Any, key: str, limit: int, window_seconds: int, now: float) -> RateLimitResult:
    # Trim, record and count in one MULTI so concurrent hits each see the others.
    member = f"{now:.6f}:{secrets.token_hex(4)}"
    async with client.pipeline(transaction=True) as pipe:
        pipe.zremrangebyscore(key, "-inf", now - window_seconds)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, int(math.ceil(window_seconds)))
        _, _, count, oldest, _ = await pipe.execute()

    count = int(count)
    oldest_score = float(oldest[0][1]) if oldest else now
    if count > limit:
        # Rejected hits do not occupy the window.
        await client.zrem(key, member)
        return RateLimitResult(success=False, limit=limit, remaining=0, reset=oldest_score + window_seconds)
    return RateLimitResult(success=True, limit=limit, remaining=limit - count, reset=oldest_score + window_seconds)


async def check_rate_limit(
    identifier: str, limiter: SlidingWindowLimiter | None, *, now: float | None = None
) -> RateLimitResult:
    """
    Record one hit for `identifier` and report whether it fits in the window.

    Fails open: with no limiter, no configured backend, or a backend error the
    hit is allowed (errors are logged).
    """
    if limiter is None:
        return ALLOW_ALL
    backend = (settings.rate_limit_backend or "").strip().lower()
    now = time.time() if now is None else now

    if backend == "memory":
        return _hit_memory(limiter.buckets[identifier], limiter.limit, limiter.window_seconds, now)
    if backend != "redis":
        return ALLOW_ALL

    client = get_redis()
    if client is None:
        return ALLOW_ALL
    try:
        return await _hit_redis(client, limiter.key_for(identifier), limiter.limit, limiter.window_seconds, now)
    except Exception as exc:
        logger.warning("rate_limit_backend_failed", extra={"limiter": limiter.name, "error": str(exc)})
        return RateLimitResult(success=True, limit=0, remaining=0, reset=0, error="Rate limit check failed")


def format_time_until_reset(reset: float, *, now: float | None = None) -> str:
    """Render a reset timestamp as "now", "N minutes" or "N hours"."""
    now = time.time() if now is None else now
    diff = reset - now
    if diff <= 0:
        return "now"
    minutes = math.ceil(diff / 60)
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = math.ceil(minutes / 60)
    return f"{hours} hour{'s' if hours != 1 else ''}"


def per_ip_limiter(limiter: SlidingWindowLimiter) -> Callable[[Request], Awaitable[None]]:
    """FastAPI dependency enforcing `limiter` per hashed client IP."""

    async def dependency(request: Request) -> None:
        identifier = hash_ip_address(resolve_client_ip(request.headers, request.client))
        result = await check_rate_limit(identifier, limiter)
        if not result.success:
            retry_after_seconds = max(1, int(math.ceil(result.reset - time.time())))
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many requests. Please try again in {format_time_until_reset(result.reset)}.",
                headers={"Retry-After": str(retry_after_seconds)},
            )

    dependency.limiter = limiter  # type: ignore[attr-defined]
    return dependency


def reset_buckets(limiters: Iterable[SlidingWindowLimiter]) -> None:
    """Helper for tests to clear in-process limiter state."""
    for limiter in limiters:
        limiter.buckets.clear()
