"""Two-tier response cache: Redis when available, in-process memory otherwise."""
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.redis import get_redis

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "quote-relay"

# How long to stay on the memory tier after a Redis failure
REDIS_RETRY_AFTER_SECONDS = 30.0


class CacheManager:
    """Cache with a remote Redis tier and a local TTL map fallback.

    Values are JSON-serialized so both tiers hold the same representation.
    A Redis error never propagates to the caller: the operation is served
    from memory and Redis is skipped until ``REDIS_RETRY_AFTER_SECONDS``
    have passed.
    """

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[Optional[redis.Redis]]] = get_redis,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._redis_factory = redis_factory
        self._clock = clock
        self._redis: Optional[redis.Redis] = None
        self._redis_configured = True
        self._redis_retry_at = 0.0
        self._memory: Dict[str, Tuple[float, str]] = {}

    @staticmethod
    def key(prefix: str, key: str) -> str:
        """Create a namespaced cache key."""
        return f"{KEY_NAMESPACE}:{prefix}:{key}"

    async def _get_client(self) -> Optional[redis.Redis]:
        if not self._redis_configured or self._clock() < self._redis_retry_at:
            return None
        if self._redis is None:
            self._redis = await self._redis_factory()
            if self._redis is None:
                logger.info("Using in-memory cache (REDIS_URL not provided)")
                self._redis_configured = False
        return self._redis

    def _mark_unhealthy(self, operation: str, error: Exception) -> None:
        logger.warning(f"Redis {operation} failed, falling back to memory cache: {error}")
        self._redis_retry_at = self._clock() + REDIS_RETRY_AFTER_SECONDS

    async def get(self, key: str) -> Any:
        """Get a cached value, or None when missing or expired."""
        client = await self._get_client()
        if client is not None:
            try:
                raw = await client.get(key)
                return json.loads(raw) if raw is not None else None
            except RedisError as e:
                self._mark_unhealthy("get", e)
        return self._get_from_memory(key)

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Store a value for ``ttl`` seconds."""
        raw = json.dumps(value, default=str)
        client = await self._get_client()
        if client is not None:
            try:
                await client.setex(key, ttl, raw)
                return True
            except RedisError as e:
                self._mark_unhealthy("set", e)
        self._memory[key] = (self._clock() + ttl, raw)
        return True

    async def delete(self, key: str) -> bool:
        """Delete a value from both tiers."""
        self._memory.pop(key, None)
        client = await self._get_client()
        if client is not None:
            try:
                await client.delete(key)
            except RedisError as e:
                self._mark_unhealthy("delete", e)
                return False
        return True

    def _get_from_memory(self, key: str) -> Any:
        entry = self._memory.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if self._clock() >= expires_at:
            del self._memory[key]
            return None
        return json.loads(raw)

    def cleanup_memory(self) -> int:
        """Drop expired memory entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._memory.items() if now >= expires_at]
        for k in expired:
            del self._memory[k]
        if expired:
            logger.debug(f"Cache cleanup: removed {len(expired)} expired entries")
        return len(expired)

    def get_stats(self) -> dict:
        """Cache statistics."""
        redis_active = (
            self._redis is not None
            and self._redis_configured
            and self._clock() >= self._redis_retry_at
        )
        return {
            "type": "redis" if redis_active else "memory",
            "memory_size": len(self._memory),
            "redis_connected": redis_active,
        }
