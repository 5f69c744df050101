"""
Main FastAPI application.

E-commerce order API instrumented with OpenTelemetry:
- CORS configuration
- Error handling
- Request ID and trace correlation
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace

from storefront import __version__
from storefront.config import Settings, get_settings
from storefront.core.container import ServiceContainer
from storefront.database import init_db
from storefront.monitoring.logging import setup_logging
from storefront.monitoring.telemetry import Telemetry, setup_telemetry
from storefront.monitoring.tracing import TraceContext

from .errors import register_exception_handlers
from .routes import monitoring_router, order_router, product_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Builds the services unless they were injected, creates missing tables
    and flushes telemetry on shutdown.
    """
    settings: Settings = app.state.settings
    telemetry: Telemetry = app.state.telemetry

    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        otel_mode=settings.otel_mode.value,
        telemetry_enabled=telemetry.enabled,
    )

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = ServiceContainer.from_settings(settings)
    services: ServiceContainer = app.state.services

    telemetry.instrument_database(services.engine)
    telemetry.instrument_redis()

    if settings.database_auto_create:
        try:
            await init_db(services.engine)
            logger.info("database_initialized")
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

    yield

    # Shutdown
    logger.info("application_shutdown")
    if owns_services:
        await services.close()
    telemetry.shutdown()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
    telemetry: Optional[Telemetry] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings (read from the environment when omitted)
        services: Pre-built services; built during startup when omitted
        telemetry: Telemetry pipeline; built from ``settings`` when omitted
    """
    settings = settings or get_settings()
    telemetry = telemetry or setup_telemetry(settings)

    otel_handler = telemetry.logging_handler()
    setup_logging(settings, extra_handlers=[otel_handler] if otel_handler else ())

    app = FastAPI(
        title="Storefront API",
        description=(
            "E-commerce order API instrumented with OpenTelemetry. "
            "Features: inventory reservation, simulated payments with compensation, "
            "read-through caching, and trace/log export in direct or collector mode."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.telemetry = telemetry
    if services is not None:
        app.state.services = services

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_context_middleware(request: Request, call_next: Any) -> Response:
        """
        Capture the server span once and hand it to the route as a TraceContext.

        Also adds timing information and structured logging context.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        ctx = TraceContext(
            tracer=telemetry.tracer,
            span=trace.get_current_span(),
            request_id=request_id,
        )
        ctx.set_attribute("http.request_id", request_id)
        request.state.trace_context = ctx

        structlog.contextvars.bind_contextvars(
            method=request.method,
            path=request.url.path,
            **ctx.log_fields(),
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    register_exception_handlers(app)

    app.include_router(order_router)
    app.include_router(product_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "otel_mode": settings.otel_mode.value,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    telemetry.instrument_app(app)
    return app

