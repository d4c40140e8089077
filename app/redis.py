"""
Redis client configuration using redis-py (asyncio).
Used as a fast-path cache for processed webhook events and as the Celery broker.
"""

from datetime import timedelta
from typing import Optional
import logging

from redis import asyncio as aioredis
from redis.asyncio.client import Redis

from app.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper."""

    _client: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Redis:
        """Get or create Redis client."""
        if cls._client is None:
            if not settings.redis_url:
                raise RuntimeError("REDIS_URL not set")

            cls._client = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                health_check_interval=30,
            )
            logger.info("Redis client initialized")

        return cls._client

    @classmethod
    async def close(cls):
        """Close Redis client."""
        if cls._client:
            await cls._client.close()
            cls._client = None
            logger.info("Redis client closed")


async def get_redis() -> Redis:
    """Dependency for getting redis connection."""
    return RedisClient.get_client()


# Processed webhook events, a fast path in front of the database ledger
WEBHOOK_DEDUP_PREFIX = "mp:webhook:"
WEBHOOK_DEDUP_TTL = timedelta(days=7)


async def webhook_event_seen(client: Optional[Redis], event_id: str) -> bool:
    """True only when Redis positively knows the event; errors count as unknown."""
    if client is None:
        return False
    try:
        return bool(await client.exists(f"{WEBHOOK_DEDUP_PREFIX}{event_id}"))
    except Exception as e:
        logger.warning(f"Redis dedup lookup failed, using database: {e}")
        return False


async def remember_webhook_event(client: Optional[Redis], event_id: str) -> None:
    if client is None:
        return
    try:
        await client.setex(
            f"{WEBHOOK_DEDUP_PREFIX}{event_id}",
            int(WEBHOOK_DEDUP_TTL.total_seconds()),
            "1",
        )
    except Exception as e:
        logger.warning(f"Redis dedup write failed: {e}")
