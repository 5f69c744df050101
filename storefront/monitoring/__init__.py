"""Monitoring: logging, metrics, tracing and health checks."""
