"""
Pytest configuration and fixtures.
"""
import os

os.environ.setdefault("TELEMETRY_ENABLED", "false")

from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.api.main import create_app
from storefront.config import Settings
from storefront.core.container import ServiceContainer
from storefront.core.inventory import InventoryService
from storefront.core.orders import OrderWorkflow
from storefront.database import (
    create_engine,
    create_session_factory,
    init_db,
    seed_database,
)
from storefront.integrations.payment_gateway import SimulatedPaymentGateway
from storefront.monitoring.telemetry import Telemetry
from storefront.monitoring.tracing import TraceContext

from .support import InMemoryCache, make_gateway


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}",
        redis_url="redis://localhost:6379/15",
        app_name="storefront-test",
        app_env="test",
        log_level="DEBUG",
        telemetry_enabled=False,
        payment_failure_rate=0.0,
        payment_min_latency_ms=0,
        payment_max_latency_ms=0,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Fresh schema with the sample users and products."""
    engine = create_engine(test_settings)
    await init_db(engine, drop=True)
    await seed_database(create_session_factory(engine))

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def trace_ctx(tracer_provider: TracerProvider) -> TraceContext:
    """Root trace context recording into ``span_exporter``."""
    return TraceContext(tracer=tracer_provider.get_tracer("storefront.tests"))


@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    """Gateway that approves every charge."""
    return make_gateway(failure_rate=0.0)


@pytest.fixture
def declining_gateway() -> SimulatedPaymentGateway:
    """Gateway that declines every charge."""
    return make_gateway(failure_rate=1.0)


@pytest.fixture
def inventory(
    session_factory: async_sessionmaker[AsyncSession], cache: InMemoryCache
) -> InventoryService:
    return InventoryService(session_factory, cache)


@pytest.fixture
def workflow(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    inventory: InventoryService,
    gateway: SimulatedPaymentGateway,
) -> OrderWorkflow:
    return OrderWorkflow(session_factory, cache, inventory, gateway, order_cache_ttl=120)


@pytest.fixture
def services(
    test_settings: Settings,
    engine: AsyncEngine,
    cache: InMemoryCache,
    gateway: SimulatedPaymentGateway,
) -> ServiceContainer:
    return ServiceContainer.build(test_settings, engine, cache, gateway)


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, services: ServiceContainer
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(settings=test_settings, services=services, telemetry=Telemetry.disabled())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def sample_order_data() -> dict[str, Any]:
    """Sample order request data."""
    return {
        "userId": 1,
        "items": [
            {"productId": 1, "quantity": 1},
            {"productId": 4, "quantity": 2},
        ],
        "paymentMethod": "credit_card",
    }
