"""
Shared Rate Limiter

Fixed-window counters kept in Redis so every API instance sees the same
state. One ``INCR`` plus ``EXPIRE`` pipeline per check. Keys carry the window
number and expire with it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from reimburse.core.conf import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    remaining: int
    reset_in: int

    def headers(self, limit: int) -> dict:
        return {
            'X-RateLimit-Limit': str(limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(self.reset_in),
        }


class RateLimiter:
    """
    Fixed-window limiter over a shared Redis.

    Redis being unreachable allows the request: limiting is a protection,
    not a correctness requirement.
    """

    def __init__(self, redis: Optional[Redis] = None, prefix: Optional[str] = None):
        self._redis = redis
        self._prefix = prefix or settings.BILLING_RATE_LIMIT_REDIS_PREFIX

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            from reimburse.database.redis import redis_client
            self._redis = redis_client
        return self._redis

    def _key(self, key: str, window_seconds: int) -> str:
        window = int(time.time()) // window_seconds
        return f"{self._prefix}:{key}:{window}"

    async def check(self, key: str, window_seconds: int, limit: int) -> RateLimitResult:
        """
        Count one hit against ``key`` and report whether it is within ``limit``.

        Args:
            key: Caller-scoped key, e.g. ``checkout:<user_id>``
            window_seconds: Window length
            limit: Hits allowed per window

        Returns:
            RateLimitResult(ok, remaining, reset_in)
        """
        redis_key = self._key(key, window_seconds)
        reset_in = window_seconds - int(time.time()) % window_seconds

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, window_seconds)
                count, _ = await pipe.execute()
        except RedisError as e:
            logger.warning(f"[RATE LIMIT] Redis unavailable, allowing {key}: {e}")
            return RateLimitResult(ok=True, remaining=limit, reset_in=reset_in)

        count = int(count)
        if count > limit:
            logger.info(f"[RATE LIMIT] {key} exceeded {limit}/{window_seconds}s")
        return RateLimitResult(ok=count <= limit, remaining=max(0, limit - count), reset_in=reset_in)


rate_limiter = RateLimiter()
