"""
Test doubles and database helpers.
"""
import fnmatch
import json
import random
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.database import Product
from storefront.integrations.payment_gateway import SimulatedPaymentGateway
from storefront.monitoring.tracing import TraceContext


class InMemoryCache:
    """
    Dict-backed stand-in for ``RedisCache``.

    Values go through JSON like they do in Redis so cached and fresh reads
    can be compared. TTLs are recorded but never expire.
    """

    def __init__(self, healthy: bool = True) -> None:
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.deleted: List[str] = []
        self.deleted_patterns: List[str] = []
        self.healthy = healthy

    async def get(self, ctx: TraceContext, key: str) -> Optional[Any]:
        raw = self.store.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(
        self, ctx: TraceContext, key: str, value: Any, ttl_seconds: Optional[int] = None
    ) -> bool:
        self.store[key] = json.dumps(value)
        self.ttls[key] = ttl_seconds
        return True

    async def delete(self, ctx: TraceContext, key: str) -> int:
        self.deleted.append(key)
        return 1 if self.store.pop(key, None) is not None else 0

    async def delete_pattern(self, ctx: TraceContext, pattern: str) -> int:
        self.deleted_patterns.append(pattern)
        keys = [key for key in self.store if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            del self.store[key]
        return len(keys)

    async def check_health(self) -> Dict[str, Any]:
        if self.healthy:
            return {"status": "healthy"}
        return {"status": "unhealthy", "error": "connection refused"}

    async def close(self) -> None:
        pass


async def no_sleep(seconds: float) -> None:
    return None


def make_gateway(failure_rate: float = 0.0, seed: int = 42) -> SimulatedPaymentGateway:
    """Gateway without latency whose declines are all-or-nothing."""
    return SimulatedPaymentGateway(
        failure_rate=failure_rate,
        min_latency_ms=0,
        max_latency_ms=0,
        rng=random.Random(seed),
        sleep=no_sleep,
    )


async def set_stock(
    session_factory: async_sessionmaker[AsyncSession], product_id: int, quantity: int
) -> None:
    """Force a product's stock level."""
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(Product).where(Product.id == product_id).values(stock_quantity=quantity)
            )


async def get_stock(session_factory: async_sessionmaker[AsyncSession], product_id: int) -> int:
    async with session_factory() as session:
        product = await session.get(Product, product_id)
        assert product is not None
        return product.stock_quantity
