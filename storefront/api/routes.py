"""
API routes for orders, products and monitoring.
"""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, Path, Query, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from storefront.core.container import ServiceContainer
from storefront.monitoring.tracing import TraceContext

from .dependencies import get_services, get_trace_context
from .schemas import (
    MAX_DB_INT,
    CreateOrderRequest,
    CreateOrderResponse,
    InventoryLevelResponse,
    OrderLookupResponse,
    ProductListResponse,
    ProductResponse,
    UserOrdersResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/orders", tags=["orders"])
product_router = APIRouter(prefix="/products", tags=["products"])
monitoring_router = APIRouter(tags=["monitoring"])


@order_router.post(
    "",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Check stock, reserve inventory and charge the customer",
)
async def create_order(
    request: CreateOrderRequest,
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    """
    Create a new order.

    Fails with 409 when stock is insufficient and 422 when the payment is
    declined (the reserved stock is released before responding).
    """
    logger.info(
        "api_create_order_request",
        user_id=request.user_id,
        items_count=len(request.items),
        payment_method=request.payment_method.value,
    )

    order = await services.orders.create_order(
        ctx,
        user_id=request.user_id,
        items=request.line_items(),
        payment_method=request.payment_method.value,
    )
    return {"order": order, "message": "Order created successfully"}


@order_router.get(
    "/user/{user_id}",
    response_model=UserOrdersResponse,
    summary="List a user's orders",
    description="Most recent orders first (max 50)",
)
async def list_user_orders(
    user_id: int = Path(..., ge=1, le=MAX_DB_INT),
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    """List orders placed by ``user_id``."""
    orders = await services.orders.list_user_orders(ctx, user_id)
    return {"orders": orders, "count": len(orders)}


@order_router.get(
    "/{order_id}",
    response_model=OrderLookupResponse,
    summary="Get an order",
    description="Hydrated order, served from cache when available",
)
async def get_order(
    order_id: int = Path(..., ge=1, le=MAX_DB_INT),
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    """Get order details."""
    order, cached = await services.orders.get_order(ctx, order_id)
    return {"order": order, "cached": cached}


@product_router.get("", response_model=ProductListResponse, summary="List products")
async def list_products(
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    products, cached = await services.catalog.list_products(ctx)
    return {"products": products, "count": len(products), "cached": cached}


@product_router.get("/search", response_model=ProductListResponse, summary="Search products")
async def search_products(
    q: str = Query(..., min_length=1, description="Text matched against name and description"),
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    products, cached = await services.catalog.search(ctx, q)
    return {"products": products, "count": len(products), "cached": cached}


@product_router.get("/{product_id}", response_model=ProductResponse, summary="Get a product")
async def get_product(
    product_id: int = Path(..., ge=1, le=MAX_DB_INT),
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    product, cached = await services.catalog.get_product(ctx, product_id)
    return {"product": product, "cached": cached}


@product_router.get(
    "/{product_id}/inventory",
    response_model=InventoryLevelResponse,
    summary="Get stock level",
)
async def get_inventory_level(
    product_id: int = Path(..., ge=1, le=MAX_DB_INT),
    services: ServiceContainer = Depends(get_services),
    ctx: TraceContext = Depends(get_trace_context),
) -> Dict[str, Any]:
    return await services.inventory.get_level(ctx, product_id)


@monitoring_router.get(
    "/health",
    summary="Health check",
    description="Database and cache connectivity; 503 when either is down",
)
async def health(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    """Health check endpoint for monitoring."""
    result = await services.health.check_all()
    if result["status"] != "healthy":
        logger.warning("health_check_unhealthy", services=result["services"])
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=result)
    return JSONResponse(status_code=status.HTTP_200_OK, content=result)


@monitoring_router.get(
    "/health/live",
    summary="Liveness probe",
    description="Process is up; no dependency checks",
)
async def liveness(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
