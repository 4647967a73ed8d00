"""
Redis client initialization and connection management.

Redis backs the balance cache when `balance_cache_backend` is "redis".
"""

import logging
import redis.asyncio as redis
from redis.exceptions import RedisError
from finance_backend.app.core.config import settings

logger = logging.getLogger(__name__)


def create_redis_client(url: str = None) -> redis.Redis:
    """Create an async Redis client from settings."""
    return redis.from_url(
        url or settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )


async def ping_redis(client: redis.Redis) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis ping failed: %s", e)
        return False
