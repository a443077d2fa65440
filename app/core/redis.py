"""
Redis configuration and connection management
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis client, created on first use
redis_client: Optional[redis.Redis] = None
_init_lock = asyncio.Lock()


def create_redis_client(url: str, max_connections: int = 50) -> redis.Redis:
    """
    Build a Redis client from explicit connection config
    """
    return redis.from_url(
        url,
        max_connections=max_connections,
        decode_responses=True
    )


async def init_redis():
    """
    Initialize Redis connection
    """
    global redis_client
    try:
        client = create_redis_client(settings.REDIS_URL, settings.REDIS_MAX_CONNECTIONS)
        # Test connection
        await client.ping()
        redis_client = client
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise


async def close_redis():
    """
    Close Redis connection
    """
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> redis.Redis:
    """
    Get Redis client, connecting lazily on first call
    """
    if not redis_client:
        async with _init_lock:
            if not redis_client:
                await init_redis()
    return redis_client


async def ping_redis() -> bool:
    """
    Readiness check; never raises
    """
    try:
        client = await get_redis()
        return bool(await client.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        return False
