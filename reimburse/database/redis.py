"""Shared Redis client."""

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from reimburse.core.conf import settings

logger = logging.getLogger(__name__)

class RedisCli(Redis):
    """Redis client configured from settings."""

    def __init__(self):
        super().__init__(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            db=settings.REDIS_DATABASE,
            socket_timeout=settings.REDIS_TIMEOUT,
            socket_connect_timeout=settings.REDIS_TIMEOUT,
            decode_responses=True,
        )

    async def open(self) -> None:
        """Ping once at startup. An unreachable Redis is logged, not fatal."""
        try:
            await self.ping()
            logger.info("[REDIS] Connected")
        except RedisError as e:
            logger.warning(f"[REDIS] Unavailable at startup: {e}")


redis_client: RedisCli = RedisCli()
