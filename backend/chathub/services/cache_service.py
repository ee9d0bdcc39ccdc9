# /chathub/services/cache_service.py

import json
import logging
from typing import Any, Awaitable, Callable, Optional
import redis.asyncio as redis

from chathub.config.settings import settings
from chathub.utils.circuit_breaker import CircuitBreaker
from chathub.utils.metrics import cache_operations

# Redis access for the service: shared circuit-breaker state for outbound
# collaborators and short-lived caching of values fetched from them (daily
# token usage, shared variables).

logger = logging.getLogger(__name__)


class CacheService:
    def __init__(self, redis_url: str):
        try:
            self.redis_pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
            self.redis = redis.Redis(connection_pool=self.redis_pool)
        except Exception as e:
            logger.critical(f"Failed to configure Redis at {redis_url}: {e}")
            self.redis = None
        self.circuit_breaker = CircuitBreaker("redis")

    async def get(self, key: str) -> Optional[str]:
        if not self.redis:
            return None
        try:
            result = await self.circuit_breaker.call(self.redis.get, key)
            cache_operations.labels(operation="get", status="hit" if result else "miss").inc()
            return result.decode("utf-8") if result else None
        except Exception as e:
            cache_operations.labels(operation="get", status="error").inc()
            logger.warning(f"Cache get failed for key {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 300):
        if not self.redis:
            return
        try:
            await self.circuit_breaker.call(self.redis.setex, key, ttl, value)
            cache_operations.labels(operation="set", status="success").inc()
        except Exception as e:
            cache_operations.labels(operation="set", status="error").inc()
            logger.warning(f"Cache set failed for key {key}: {e}")

    async def delete(self, key: str):
        if not self.redis:
            return
        try:
            await self.circuit_breaker.call(self.redis.delete, key)
            cache_operations.labels(operation="delete", status="success").inc()
        except Exception as e:
            cache_operations.labels(operation="delete", status="error").inc()
            logger.warning(f"Cache delete failed for key {key}: {e}")

    async def get_json(self, key: str) -> Any:
        cached_value = await self.get(key)
        if cached_value is None:
            return None
        try:
            return json.loads(cached_value)
        except json.JSONDecodeError:
            logger.warning(f"Discarding non-JSON cache entry for key {key}")
            return None

    async def set_json(self, key: str, value: Any, ttl: int = 300):
        await self.set(key, json.dumps(value, default=str), ttl)

    async def get_or_set(self, key: str, fetch_func: Callable[[], Awaitable[Any]], ttl: int = 300) -> Any:
        """Return the cached JSON value for ``key``, fetching and caching it on a miss."""
        cached = await self.get_json(key)
        if cached is not None:
            return cached
        fetched_value = await fetch_func()
        if fetched_value is not None:
            await self.set_json(key, fetched_value, ttl)
        return fetched_value

    async def ping(self) -> bool:
        if not self.redis:
            return False
        return await self.redis.ping()

    async def close(self):
        if self.redis:
            await self.redis.aclose()


# Globally accessible instance
cache_service = CacheService(settings.redis_url)
