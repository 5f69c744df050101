"""FastAPI dependencies resolving per-application and per-request state."""
from fastapi import Request
from opentelemetry import trace

from storefront.core.container import ServiceContainer
from storefront.monitoring.tracing import TraceContext


def get_services(request: Request) -> ServiceContainer:
    """Services built for this application (see ``create_app``)."""
    return request.app.state.services


def get_trace_context(request: Request) -> TraceContext:
    """
    Trace context captured by the request middleware.

    Falls back to the server span active right now when the middleware did
    not run (e.g. an error raised before it).
    """
    ctx = getattr(request.state, "trace_context", None)
    if ctx is None:
        ctx = TraceContext(
            tracer=request.app.state.telemetry.tracer,
            span=trace.get_current_span(),
        )
    return ctx
