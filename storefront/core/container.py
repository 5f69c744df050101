"""Wiring of the storefront services."""
import random
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.config import Settings
from storefront.core.catalog import ProductCatalog
from storefront.core.inventory import InventoryService
from storefront.core.orders import OrderWorkflow
from storefront.database import create_engine, create_session_factory
from storefront.integrations.cache import Cache, RedisCache
from storefront.integrations.payment_gateway import PaymentGateway, SimulatedPaymentGateway
from storefront.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived dependency of the API, built once per application."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    cache: Cache
    payment_gateway: PaymentGateway
    inventory: InventoryService
    catalog: ProductCatalog
    orders: OrderWorkflow
    health: HealthCheck

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: AsyncEngine,
        cache: Cache,
        payment_gateway: PaymentGateway,
    ) -> "ServiceContainer":
        """Assemble the services on top of already-created resources."""
        session_factory = create_session_factory(engine)
        inventory = InventoryService(session_factory, cache)
        return cls(
            engine=engine,
            session_factory=session_factory,
            cache=cache,
            payment_gateway=payment_gateway,
            inventory=inventory,
            catalog=ProductCatalog(session_factory, cache, ttl_seconds=settings.product_cache_ttl),
            orders=OrderWorkflow(
                session_factory,
                cache,
                inventory,
                payment_gateway,
                order_cache_ttl=settings.order_cache_ttl,
            ),
            health=HealthCheck(session_factory, cache),
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, rng: Optional[random.Random] = None
    ) -> "ServiceContainer":
        """Create engine, Redis client and payment gateway from ``settings``."""
        engine = create_engine(settings)
        cache = RedisCache.from_url(settings.redis_url, default_ttl=settings.product_cache_ttl)
        gateway = SimulatedPaymentGateway(
            failure_rate=settings.payment_failure_rate,
            min_latency_ms=settings.payment_min_latency_ms,
            max_latency_ms=settings.payment_max_latency_ms,
            rng=rng,
        )
        logger.info(
            "services_initialized",
            payment_failure_rate=settings.payment_failure_rate,
            order_cache_ttl=settings.order_cache_ttl,
        )
        return cls.build(settings, engine, cache, gateway)

    async def close(self) -> None:
        """Release Redis and database connections."""
        await self.cache.close()
        await self.engine.dispose()
        logger.info("services_closed")
