"""
OpenTelemetry setup.

Two export modes, switched with ``OTEL_MODE``:

- ``direct``:    App -> observability backend (OTLP/HTTP + auth headers)
- ``collector``: App -> local collector -> backend (collector owns the auth)

Providers are built per application and handed explicitly to the
instrumentors; nothing is registered as the global tracer/logger provider.
"""
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional
from urllib.parse import unquote

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_VERSION,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from storefront.config import OtelMode, Settings

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

INSTRUMENTATION_NAME = "storefront"


@dataclass(frozen=True)
class ExporterTarget:
    """Resolved OTLP destination for the configured mode."""

    mode: OtelMode
    endpoint: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def traces_endpoint(self) -> str:
        return f"{self.endpoint}/v1/traces"

    @property
    def logs_endpoint(self) -> str:
        return f"{self.endpoint}/v1/logs"


def parse_headers(raw: str) -> Dict[str, str]:
    """
    Parse ``OTEL_EXPORTER_OTLP_HEADERS`` style headers.

    Format is ``key=value,key2=value2`` with URL-encoded values, so commas and
    spaces inside a value must be written as ``%2C`` / ``%20``.
    """
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        if not pair.strip():
            continue
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid OTLP header entry: {pair!r}")
        headers[unquote(key.strip())] = unquote(value.strip())
    return headers


def resolve_exporter_target(settings: Settings) -> ExporterTarget:
    """Pick endpoint and headers for the configured export mode."""
    if settings.otel_mode is OtelMode.COLLECTOR:
        return ExporterTarget(
            mode=OtelMode.COLLECTOR,
            endpoint=settings.otel_collector_endpoint.rstrip("/"),
        )

    return ExporterTarget(
        mode=OtelMode.DIRECT,
        endpoint=settings.otel_exporter_otlp_endpoint.rstrip("/"),
        headers=parse_headers(settings.otel_exporter_otlp_headers),
    )


def create_resource(settings: Settings) -> Resource:
    """Resource attributes attached to every span and log record."""
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_VERSION: settings.otel_service_version,
            DEPLOYMENT_ENVIRONMENT: settings.app_env,
        }
    )


@dataclass
class Telemetry:
    """Handles to the per-application telemetry pipeline."""

    tracer: trace.Tracer
    tracer_provider: Optional[TracerProvider] = None
    logger_provider: Optional[LoggerProvider] = None
    target: Optional[ExporterTarget] = None

    @classmethod
    def disabled(cls) -> "Telemetry":
        return cls(tracer=trace.NoOpTracer())

    @property
    def enabled(self) -> bool:
        return self.tracer_provider is not None

    def logging_handler(self, level: int = logging.NOTSET) -> Optional[logging.Handler]:
        """Bridge from stdlib logging into OTLP log records."""
        if self.logger_provider is None:
            return None
        return LoggingHandler(level=level, logger_provider=self.logger_provider)

    def instrument_app(self, app: "FastAPI") -> None:
        """Server spans for every HTTP request."""
        if self.tracer_provider is None:
            return
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(
            app,
            tracer_provider=self.tracer_provider,
            excluded_urls="health/live,metrics",
        )

    def instrument_database(self, engine: "AsyncEngine") -> None:
        """Client spans for every SQL statement."""
        if self.tracer_provider is None:
            return
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

        SQLAlchemyInstrumentor().instrument(
            engine=engine.sync_engine, tracer_provider=self.tracer_provider
        )

    def instrument_redis(self) -> None:
        """Client spans for every Redis command."""
        if self.tracer_provider is None:
            return
        from opentelemetry.instrumentation.redis import RedisInstrumentor

        instrumentor = RedisInstrumentor()
        if not instrumentor.is_instrumented_by_opentelemetry:
            instrumentor.instrument(tracer_provider=self.tracer_provider)

    def shutdown(self) -> None:
        """Flush pending spans/logs and stop the exporters."""
        if self.tracer_provider is not None:
            self.tracer_provider.force_flush()
            self.tracer_provider.shutdown()
        if self.logger_provider is not None:
            self.logger_provider.force_flush()
            self.logger_provider.shutdown()
        logger.info("telemetry_shutdown")


def setup_telemetry(settings: Settings) -> Telemetry:
    """
    Build the tracing and logging pipelines for ``settings``.

    Exporters do not connect until the first batch is flushed, so an
    unreachable backend or collector only costs dropped telemetry (logged by
    the SDK), never a failed request.
    """
    if not settings.telemetry_enabled:
        logger.info("telemetry_disabled")
        return Telemetry.disabled()

    target = resolve_exporter_target(settings)
    resource = create_resource(settings)

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=target.traces_endpoint, headers=target.headers)
        )
    )

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(
        BatchLogRecordProcessor(
            OTLPLogExporter(endpoint=target.logs_endpoint, headers=target.headers)
        )
    )

    logger.info(
        "telemetry_initialized",
        mode=target.mode.value,
        endpoint=target.endpoint,
        service_name=settings.otel_service_name,
    )

    return Telemetry(
        tracer=tracer_provider.get_tracer(INSTRUMENTATION_NAME, settings.otel_service_version),
        tracer_provider=tracer_provider,
        logger_provider=logger_provider,
        target=target,
    )
