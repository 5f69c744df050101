"""
Unit tests for telemetry setup and the explicit trace context.
"""
from dataclasses import replace
from decimal import Decimal

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from storefront.config import OtelMode, Settings
from storefront.core.domain import OrderStatus
from storefront.core.exceptions import NotFoundError
from storefront.monitoring.telemetry import (
    Telemetry,
    parse_headers,
    resolve_exporter_target,
    setup_telemetry,
)
from storefront.monitoring.tracing import TraceContext, clean_attributes


def make_settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestExporterTarget:
    """Direct vs collector export."""

    @pytest.mark.unit
    def test_parse_headers(self) -> None:
        headers = parse_headers("authorization=Bearer%20abc, x-scope = team%2Cone")

        assert headers == {"authorization": "Bearer abc", "x-scope": "team,one"}

    @pytest.mark.unit
    def test_parse_headers_empty(self) -> None:
        assert parse_headers("") == {}

    @pytest.mark.unit
    def test_parse_headers_rejects_garbage(self) -> None:
        with pytest.raises(ValueError, match="Invalid OTLP header"):
            parse_headers("no-equals-sign")

    @pytest.mark.unit
    def test_direct_mode_uses_backend_with_headers(self) -> None:
        settings = make_settings(
            otel_mode="direct",
            otel_exporter_otlp_endpoint="https://otlp.example.com/",
            otel_exporter_otlp_headers="x-api-key=secret",
        )

        target = resolve_exporter_target(settings)

        assert target.mode is OtelMode.DIRECT
        assert target.traces_endpoint == "https://otlp.example.com/v1/traces"
        assert target.logs_endpoint == "https://otlp.example.com/v1/logs"
        assert target.headers == {"x-api-key": "secret"}

    @pytest.mark.unit
    def test_collector_mode_drops_auth_headers(self) -> None:
        settings = make_settings(
            otel_mode="collector",
            otel_collector_endpoint="http://collector:4318",
            otel_exporter_otlp_headers="x-api-key=secret",
        )

        target = resolve_exporter_target(settings)

        assert target.mode is OtelMode.COLLECTOR
        assert target.traces_endpoint == "http://collector:4318/v1/traces"
        assert target.headers == {}


class TestSetupTelemetry:
    """Provider construction."""

    @pytest.mark.unit
    def test_disabled(self) -> None:
        telemetry = setup_telemetry(make_settings(telemetry_enabled=False))

        assert telemetry.enabled is False
        assert telemetry.logging_handler() is None
        telemetry.shutdown()

    @pytest.mark.unit
    def test_enabled_builds_providers(self) -> None:
        telemetry = setup_telemetry(
            make_settings(telemetry_enabled=True, otel_service_name="storefront-under-test")
        )
        try:
            assert telemetry.enabled is True
            assert telemetry.logger_provider is not None
            assert telemetry.logging_handler() is not None
            resource = telemetry.tracer_provider.resource
            assert resource.attributes["service.name"] == "storefront-under-test"
        finally:
            telemetry.shutdown()

    @pytest.mark.unit
    def test_disabled_instrumentation_is_noop(self) -> None:
        telemetry = Telemetry.disabled()

        telemetry.instrument_redis()
        telemetry.instrument_app(object())  # type: ignore[arg-type]


class TestTraceContext:
    """Explicit parenting, events and error recording."""

    @pytest.mark.unit
    def test_clean_attributes(self) -> None:
        cleaned = clean_attributes(
            {"a": None, "b": Decimal("1.50"), "c": OrderStatus.CONFIRMED, "d": [1], "e": 3}
        )

        assert cleaned == {"b": 1.5, "c": "confirmed", "d": "[1]", "e": 3}

    @pytest.mark.unit
    def test_child_spans_are_parented_explicitly(
        self, trace_ctx: TraceContext, span_exporter: InMemorySpanExporter
    ) -> None:
        with trace_ctx.child("outer", {"k": "v"}) as outer:
            with outer.child("inner") as inner:
                inner.add_event("something.happened", {"count": 2})

        spans = {s.name: s for s in span_exporter.get_finished_spans()}
        assert spans["inner"].parent.span_id == spans["outer"].context.span_id
        assert spans["inner"].context.trace_id == spans["outer"].context.trace_id
        assert spans["outer"].attributes["k"] == "v"
        assert spans["inner"].events[0].name == "something.happened"

    @pytest.mark.unit
    def test_errors_are_recorded_and_reraised(
        self, trace_ctx: TraceContext, span_exporter: InMemorySpanExporter
    ) -> None:
        with pytest.raises(NotFoundError):
            with trace_ctx.child("lookup"):
                raise NotFoundError("User 99999 not found")

        (span,) = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["error.type"] == "NotFoundError"
        assert span.attributes["error.code"] == "NOT_FOUND"
        assert any(event.name == "exception" for event in span.events)

    @pytest.mark.unit
    def test_log_fields(self, trace_ctx: TraceContext) -> None:
        assert trace_ctx.log_fields() == {}

        with trace_ctx.child("work") as ctx:
            fields = replace(ctx, request_id="req-1").log_fields()

        assert fields["request_id"] == "req-1"
        assert len(fields["trace_id"]) == 32
        assert len(fields["span_id"]) == 16

    @pytest.mark.unit
    def test_noop_context(self) -> None:
        ctx = TraceContext.noop()

        with ctx.child("anything") as child:
            child.add_event("ignored")

        assert child.trace_id is None
