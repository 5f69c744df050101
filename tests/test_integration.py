"""
Integration tests through the HTTP API.
"""
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy.ext.asyncio import AsyncEngine

from storefront.api.main import create_app
from storefront.config import Settings
from storefront.core.container import ServiceContainer
from storefront.monitoring.telemetry import Telemetry

from .support import InMemoryCache, make_gateway


@pytest_asyncio.fixture
async def declining_client(
    test_settings: Settings, engine: AsyncEngine, cache: InMemoryCache
) -> AsyncGenerator[AsyncClient, Any]:
    services = ServiceContainer.build(test_settings, engine, cache, make_gateway(failure_rate=1.0))
    app = create_app(settings=test_settings, services=services, telemetry=Telemetry.disabled())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestOrderEndpoints:
    """POST /orders and the order reads."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order(self, client: AsyncClient, sample_order_data: dict) -> None:
        response = await client.post("/orders", json=sample_order_data)

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Order created successfully"
        order = body["order"]
        assert order["status"] == "confirmed"
        assert order["payment_status"] == "completed"
        assert order["total_amount"] == "1799.97"
        assert order["email"] == "john@example.com"
        assert len(order["items"]) == 2
        assert order["payment"]["success"] is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_insufficient_inventory(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders",
            json={
                "userId": 1,
                "items": [{"productId": 1, "quantity": 10000}],
                "paymentMethod": "credit_card",
            },
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_INVENTORY"
        assert error["details"][0]["product_id"] == 1

        level = await client.get("/products/1/inventory")
        assert level.json()["stock_quantity"] == 50

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders",
            json={
                "userId": 99999,
                "items": [{"productId": 1, "quantity": 1}],
                "paymentMethod": "credit_card",
            },
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_declined(
        self, declining_client: AsyncClient, sample_order_data: dict
    ) -> None:
        response = await declining_client.post("/orders", json=sample_order_data)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "PAYMENT_FAILED"
        assert error["message"].startswith("Payment failed: ")
        order_id = error["details"]["order_id"]

        order = (await declining_client.get(f"/orders/{order_id}")).json()["order"]
        assert order["status"] == "cancelled"
        assert order["payment_status"] == "failed"
        level = await declining_client.get("/products/1/inventory")
        assert level.json()["stock_quantity"] == 50

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"userId": 1, "items": [], "paymentMethod": "credit_card"},
            {"userId": 1, "items": [{"productId": 1, "quantity": 0}], "paymentMethod": "paypal"},
            {"userId": 1, "items": [{"productId": 1, "quantity": 1}], "paymentMethod": "cash"},
            {"items": [{"productId": 1, "quantity": 1}], "paymentMethod": "paypal"},
            {"userId": True, "items": [{"productId": 1, "quantity": 1}], "paymentMethod": "paypal"},
            {"userId": 1, "items": [{"productId": 1, "quantity": True}], "paymentMethod": "paypal"},
            {"userId": 1, "items": [{"productId": True, "quantity": 1}], "paymentMethod": "paypal"},
            {"userId": 2**70, "items": [{"productId": 1, "quantity": 1}], "paymentMethod": "paypal"},
            {"userId": 1, "items": [{"productId": 1, "quantity": 2**70}], "paymentMethod": "paypal"},
        ],
    )
    async def test_validation_errors(self, client: AsyncClient, payload: dict) -> None:
        response = await client.post("/orders", json=payload)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert isinstance(error["details"], list)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_boolean_ids_do_not_create_orders(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders",
            json={
                "userId": True,
                "items": [{"productId": True, "quantity": True}],
                "paymentMethod": "credit_card",
            },
        )

        assert response.status_code == 400
        assert (await client.get("/orders/user/1")).json()["count"] == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        [
            f"/orders/{2**70}",
            f"/orders/user/{2**70}",
            f"/products/{2**70}",
            f"/products/{2**70}/inventory",
            "/orders/0",
        ],
    )
    async def test_out_of_range_ids_are_rejected(self, client: AsyncClient, path: str) -> None:
        response = await client.get(path)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_order_from_store_then_cache(
        self, client: AsyncClient, sample_order_data: dict
    ) -> None:
        order_id = (await client.post("/orders", json=sample_order_data)).json()["order"]["id"]

        first = await client.get(f"/orders/{order_id}")
        second = await client.get(f"/orders/{order_id}")

        assert first.status_code == second.status_code == 200
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert first.json()["order"] == second.json()["order"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_order(self, client: AsyncClient) -> None:
        response = await client.get("/orders/99999")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_user_orders(self, client: AsyncClient, sample_order_data: dict) -> None:
        await client.post("/orders", json=sample_order_data)
        await client.post("/orders", json=sample_order_data)

        response = await client.get("/orders/user/1")

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert all(order["items_count"] == 2 for order in body["orders"])


class TestProductEndpoints:
    """Catalogue reads."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_products_cached_on_second_read(self, client: AsyncClient) -> None:
        first = await client.get("/products")
        second = await client.get("/products")

        assert first.json()["count"] == 10
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert first.json()["products"] == second.json()["products"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_invalidates_product_listings(
        self, client: AsyncClient, sample_order_data: dict
    ) -> None:
        await client.get("/products")
        await client.post("/orders", json=sample_order_data)

        response = await client.get("/products")

        assert response.json()["cached"] is False
        laptop = next(p for p in response.json()["products"] if p["id"] == 1)
        assert laptop["stock_quantity"] == 49

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_and_search(self, client: AsyncClient) -> None:
        product = await client.get("/products/1")
        search = await client.get("/products/search", params={"q": "laptop"})
        missing = await client.get("/products/99999")

        assert product.json()["product"]["sku"] == "LAPTOP-001"
        assert product.json()["product"]["price"] == "1299.99"
        assert search.json()["count"] == 1
        assert missing.status_code == 404


class TestMonitoringEndpoints:
    """Health, metrics and error envelope."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["database"]["status"] == "healthy"
        assert body["services"]["cache"]["status"] == "healthy"
        assert "timestamp" in body

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health_with_cache_down(self, client: AsyncClient, cache: InMemoryCache) -> None:
        cache.healthy = False

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["services"]["cache"]["status"] == "unhealthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness_and_metrics(self, client: AsyncClient) -> None:
        live = await client.get("/health/live")
        metrics = await client.get("/metrics")

        assert live.json()["status"] == "alive"
        assert metrics.status_code == 200
        assert "storefront_orders_total" in metrics.text

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_route(self, client: AsyncClient) -> None:
        response = await client.get("/nope")

        assert response.status_code == 404
        assert response.json() == {
            "error": {"message": "Resource not found", "code": "NOT_FOUND", "path": "/nope"}
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_request_id_header(self, client: AsyncClient) -> None:
        generated = await client.get("/health/live")
        echoed = await client.get("/health/live", headers={"X-Request-ID": "req-123"})

        assert generated.headers["X-Request-ID"]
        assert echoed.headers["X-Request-ID"] == "req-123"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stack_only_outside_production(
        self, test_settings: Settings, services: ServiceContainer
    ) -> None:
        production = test_settings.model_copy(update={"app_env": "production"})

        for settings, has_stack in ((test_settings, True), (production, False)):
            app = create_app(settings=settings, services=services, telemetry=Telemetry.disabled())
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                error = (await ac.get("/orders/99999")).json()["error"]
            assert ("stack" in error) is has_stack


class TestTracing:
    """Spans emitted for a request."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_spans_nest_under_server_span(
        self,
        test_settings: Settings,
        services: ServiceContainer,
        tracer_provider: TracerProvider,
        span_exporter: InMemorySpanExporter,
        sample_order_data: dict,
    ) -> None:
        telemetry = Telemetry(
            tracer=tracer_provider.get_tracer("storefront"),
            tracer_provider=tracer_provider,
        )
        app = create_app(settings=test_settings, services=services, telemetry=telemetry)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post("/orders", json=sample_order_data)
        assert response.status_code == 201

        spans = span_exporter.get_finished_spans()
        order_span = next(s for s in spans if s.name == "order.create")
        server_span = next(s for s in spans if s.parent is None)
        assert order_span.context.trace_id == server_span.context.trace_id
        assert order_span.parent.span_id == server_span.context.span_id
        assert any(s.name == "payment.process" for s in spans)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_errors_recorded_on_server_span(
        self,
        test_settings: Settings,
        services: ServiceContainer,
        tracer_provider: TracerProvider,
        span_exporter: InMemorySpanExporter,
    ) -> None:
        telemetry = Telemetry(
            tracer=tracer_provider.get_tracer("storefront"),
            tracer_provider=tracer_provider,
        )
        app = create_app(settings=test_settings, services=services, telemetry=telemetry)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            await ac.get("/orders/99999")

        server_span = next(s for s in span_exporter.get_finished_spans() if s.parent is None)
        assert server_span.attributes["error.code"] == "NOT_FOUND"
