"""
Redis Connection Management

One shared Redis connection, used for cross-worker conversation locks.
Callers get None while Redis is unreachable and coordinate in-process.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

# Key namespace shared by every key this service writes
APP_PREFIX = "channel-pipeline:v1:"


class RedisClient:
    """
    Lazily connected Redis singleton.

    A failed connection attempt is not cached: the next caller retries,
    so locks move back to Redis once it recovers.
    """

    _client: Optional[Redis] = None

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get the connected client.

        Returns:
            Redis client, or None if Redis cannot be reached
        """
        if cls._client is not None:
            return cls._client

        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=5.0,
            retry=Retry(ExponentialBackoff(cap=1.0), retries=2),
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis unavailable at {settings.redis_url}: {e}")
            await client.aclose()
            return None

        logger.info("Redis connection established")
        cls._client = client
        return client

    @classmethod
    async def close(cls) -> None:
        """Close the shared connection, if any."""
        client, cls._client = cls._client, None
        if client is None:
            return
        try:
            await client.aclose()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._client is not None


async def get_redis() -> Optional[Redis]:
    """Redis provider for ConversationLocks."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """Ping Redis for the readiness probe."""
    client = await get_redis()
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
