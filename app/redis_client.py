"""
Process-wide Redis client shared by the geo pool, offer locks, surge cache,
event log and notifications.
"""
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis_max_connections,
        )
    return _redis_pool


async def redis_healthy(redis: aioredis.Redis) -> bool:
    try:
        return bool(await redis.ping())
    except RedisError as exc:
        logger.warning("Redis health check failed: %s", exc)
        return False


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
