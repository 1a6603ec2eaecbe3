"""Shared Redis client for the second cache tier.

Redis is optional: without REDIS_URL the cache stays in process memory
and ``get_redis`` returns None.
"""
import asyncio
import logging
from typing import Optional
import redis.asyncio as redis
from app.core.config import settings

logger = logging.getLogger(__name__)

REDIS_MAX_CONNECTIONS = 20

_client: Optional[redis.Redis] = None
_client_lock = asyncio.Lock()


def _open(url: str) -> redis.Redis:
    logger.info("Opening Redis connection pool for quote cache")
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=REDIS_MAX_CONNECTIONS
    )


async def get_redis() -> Optional[redis.Redis]:
    """Return the shared client, creating it on first use."""
    global _client

    if not settings.redis_url:
        return None

    if _client is None:
        async with _client_lock:
            # Another task may have opened it while we waited
            if _client is None:
                _client = _open(settings.redis_url)
    return _client


async def close_redis():
    global _client
    async with _client_lock:
        if _client is None:
            return
        await _client.aclose()
        _client = None
        logger.info("Redis connection pool closed")
