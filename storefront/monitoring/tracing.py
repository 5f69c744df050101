"""
Explicit trace context.

Services never look up "the current span". Each call receives a
``TraceContext`` holding the tracer and the span it should parent to, and
hands a child context down to whatever it calls. The child span is also made
current for the duration of the block so library instrumentation (SQLAlchemy,
Redis) nests underneath it.
"""
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer

AttributeValue = str | bool | int | float


def clean_attributes(attributes: Optional[Mapping[str, Any]]) -> Dict[str, AttributeValue]:
    """
    Coerce values into types OpenTelemetry accepts.

    ``None`` values are dropped, Decimals become floats and enums their value.
    """
    if not attributes:
        return {}

    cleaned: Dict[str, AttributeValue] = {}
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, Decimal):
            cleaned[key] = float(value)
        elif isinstance(value, (str, bool, int, float)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


@dataclass(frozen=True)
class TraceContext:
    """Tracer plus the span new work should be parented to."""

    tracer: Tracer
    span: Span = trace.INVALID_SPAN
    request_id: Optional[str] = None

    @classmethod
    def noop(cls) -> "TraceContext":
        """Context that records nothing (scripts, tests)."""
        return cls(tracer=trace.NoOpTracer())

    @property
    def trace_id(self) -> Optional[str]:
        ctx = self.span.get_span_context()
        return format(ctx.trace_id, "032x") if ctx.is_valid else None

    @property
    def span_id(self) -> Optional[str]:
        ctx = self.span.get_span_context()
        return format(ctx.span_id, "016x") if ctx.is_valid else None

    def log_fields(self) -> Dict[str, str]:
        """Correlation fields for structured logs."""
        fields: Dict[str, str] = {}
        if self.request_id:
            fields["request_id"] = self.request_id
        if self.trace_id:
            fields["trace_id"] = self.trace_id
            fields["span_id"] = self.span_id or ""
        return fields

    @contextmanager
    def child(
        self, name: str, attributes: Optional[Mapping[str, Any]] = None
    ) -> Iterator["TraceContext"]:
        """
        Start a child span of ``self.span`` and yield a context for it.

        Exceptions escaping the block are recorded on the span (exception
        event, ERROR status, ``error.type`` / ``error.code``) and re-raised.
        """
        parent = trace.set_span_in_context(self.span)
        span = self.tracer.start_span(name, context=parent, attributes=clean_attributes(attributes))
        child = replace(self, span=span)

        with trace.use_span(
            span, end_on_exit=True, record_exception=False, set_status_on_exception=False
        ):
            try:
                yield child
            except Exception as exc:
                child.record_error(exc)
                raise

    def add_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        self.span.add_event(name, attributes=clean_attributes(attributes))

    def set_attribute(self, key: str, value: Any) -> None:
        self.set_attributes({key: value})

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        self.span.set_attributes(clean_attributes(attributes))

    def record_error(self, exc: BaseException) -> None:
        """Mark the span as failed because of ``exc``."""
        self.span.record_exception(exc)
        self.span.set_status(Status(StatusCode.ERROR, str(exc)))
        self.set_attributes(
            {
                "error.type": type(exc).__name__,
                "error.code": getattr(exc, "error_code", None),
            }
        )
