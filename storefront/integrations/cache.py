"""
Redis-backed read-through cache.

The cache is best-effort: when Redis is unreachable every operation degrades
(``get`` reports a miss, writes and deletes become no-ops) so callers fall
through to the database instead of failing the request.
"""
import json
from typing import Any, List, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from storefront.monitoring.metrics import metrics
from storefront.monitoring.tracing import TraceContext

logger = structlog.get_logger(__name__)

CACHE_ERRORS = (RedisError, OSError)


class Cache(Protocol):
    """Key/value contract the services depend on."""

    async def get(self, ctx: TraceContext, key: str) -> Optional[Any]: ...

    async def set(
        self, ctx: TraceContext, key: str, value: Any, ttl_seconds: Optional[int] = None
    ) -> bool: ...

    async def delete(self, ctx: TraceContext, key: str) -> int: ...

    async def delete_pattern(self, ctx: TraceContext, pattern: str) -> int: ...

    async def check_health(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


def product_key(product_id: int) -> str:
    return f"product:{product_id}"


def order_key(order_id: int) -> str:
    return f"order:{order_id}"


PRODUCT_LISTINGS_PATTERN = "products:*"


class RedisCache:
    """
    JSON cache over ``redis.asyncio`` with span-per-operation instrumentation.
    """

    def __init__(self, redis_client: aioredis.Redis, default_ttl: int = 300):
        """
        Initialize the cache.

        Args:
            redis_client: Redis client (decode_responses=True)
            default_ttl: TTL used when ``set`` is called without one
        """
        self.redis = redis_client
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, redis_url: str, default_ttl: int = 300) -> "RedisCache":
        client = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, default_ttl=default_ttl)

    async def get(self, ctx: TraceContext, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or cache failure."""
        with ctx.child("cache.get", {"cache.key": key, "cache.operation": "get"}) as span:
            try:
                raw = await self.redis.get(key)
            except CACHE_ERRORS as e:
                self._degraded(span, "get", key, e)
                return None

            if raw is None:
                span.set_attribute("cache.hit", False)
                span.add_event("cache.miss", {"key": key})
                metrics.record_cache_operation("get", "miss")
                return None

            try:
                value = json.loads(raw)
            except ValueError as e:
                logger.warning("cache_value_corrupt", key=key, error=str(e))
                span.add_event("cache.corrupt", {"key": key})
                metrics.record_cache_operation("get", "error")
                return None

            span.set_attribute("cache.hit", True)
            span.add_event("cache.hit", {"key": key})
            metrics.record_cache_operation("get", "hit")
            return value

    async def set(
        self, ctx: TraceContext, key: str, value: Any, ttl_seconds: Optional[int] = None
    ) -> bool:
        """Store ``value`` as JSON with a TTL."""
        ttl = ttl_seconds or self.default_ttl
        with ctx.child(
            "cache.set", {"cache.key": key, "cache.operation": "set", "cache.ttl": ttl}
        ) as span:
            try:
                await self.redis.setex(key, ttl, json.dumps(value))
            except CACHE_ERRORS as e:
                self._degraded(span, "set", key, e)
                return False

            span.add_event("cache.stored", {"key": key, "ttl": ttl})
            metrics.record_cache_operation("set", "ok")
            return True

    async def delete(self, ctx: TraceContext, key: str) -> int:
        """Delete one key. Returns the number of keys removed."""
        with ctx.child("cache.delete", {"cache.key": key, "cache.operation": "delete"}) as span:
            try:
                removed = await self.redis.delete(key)
            except CACHE_ERRORS as e:
                self._degraded(span, "delete", key, e)
                return 0

            span.add_event("cache.deleted", {"key": key, "existed": removed > 0})
            metrics.record_cache_operation("delete", "ok")
            return removed

    async def delete_pattern(self, ctx: TraceContext, pattern: str) -> int:
        """Delete every key matching a glob ``pattern`` (SCAN, not KEYS)."""
        with ctx.child(
            "cache.delete_pattern",
            {"cache.pattern": pattern, "cache.operation": "delete_pattern"},
        ) as span:
            try:
                keys: List[str] = [key async for key in self.redis.scan_iter(match=pattern)]
                removed = await self.redis.delete(*keys) if keys else 0
            except CACHE_ERRORS as e:
                self._degraded(span, "delete_pattern", pattern, e)
                return 0

            if removed:
                span.add_event("cache.pattern_deleted", {"pattern": pattern, "count": removed})
            metrics.record_cache_operation("delete_pattern", "ok")
            return removed

    async def check_health(self) -> dict[str, Any]:
        """Ping Redis."""
        try:
            await self.redis.ping()
            return {"status": "healthy"}
        except CACHE_ERRORS as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}

    async def close(self) -> None:
        """Close Redis connection."""
        await self.redis.aclose()

    @staticmethod
    def _degraded(span: TraceContext, operation: str, key: str, error: Exception) -> None:
        logger.warning(
            "cache_unavailable",
            operation=operation,
            key=key,
            error=str(error),
            **span.log_fields(),
        )
        span.add_event("cache.unavailable", {"operation": operation, "error": str(error)})
        metrics.record_cache_operation(operation, "error")
