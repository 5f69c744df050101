"""Storefront: OpenTelemetry-instrumented e-commerce order API."""

__version__ = "1.0.0"
