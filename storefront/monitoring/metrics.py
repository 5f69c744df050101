"""
Prometheus metrics for storefront monitoring.

Tracks:
- Orders by final status, processing duration and amount
- Inventory reservations by outcome
- Payment attempts by method / outcome and gateway latency
- Cache operations by result (hit, miss, error)
"""
from decimal import Decimal

from prometheus_client import Counter, Histogram

# Order metrics
orders_total = Counter(
    "storefront_orders_total",
    "Total number of order creation attempts by final status",
    ["status"],  # confirmed, cancelled, failed, rejected
)

order_processing_duration_seconds = Histogram(
    "storefront_order_processing_duration_seconds",
    "Order creation duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0),
)

order_amount = Histogram(
    "storefront_order_amount",
    "Order totals in currency units",
    buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

# Inventory metrics
inventory_operations_total = Counter(
    "storefront_inventory_operations_total",
    "Inventory reservations and releases",
    ["operation", "status"],  # operation: reserve, release; status: success, failed
)

# Payment metrics
payment_requests_total = Counter(
    "storefront_payment_requests_total",
    "Total payment gateway requests",
    ["payment_method", "status"],
)

payment_duration_seconds = Histogram(
    "storefront_payment_duration_seconds",
    "Payment gateway call duration in seconds",
    ["payment_method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5),
)

# Cache metrics
cache_operations_total = Counter(
    "storefront_cache_operations_total",
    "Cache operations by result",
    ["operation", "result"],  # result: hit, miss, ok, error
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order(status: str, duration_seconds: float, amount: Decimal | None = None) -> None:
        """Record the outcome of an order creation attempt."""
        orders_total.labels(status=status).inc()
        order_processing_duration_seconds.observe(duration_seconds)
        if amount is not None:
            order_amount.observe(float(amount))

    @staticmethod
    def record_inventory_operation(operation: str, status: str) -> None:
        """Record a reservation or release."""
        inventory_operations_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def record_payment(payment_method: str, status: str, duration_seconds: float) -> None:
        """Record a payment gateway call."""
        payment_requests_total.labels(payment_method=payment_method, status=status).inc()
        payment_duration_seconds.labels(payment_method=payment_method).observe(duration_seconds)

    @staticmethod
    def record_cache_operation(operation: str, result: str) -> None:
        """Record a cache operation."""
        cache_operations_total.labels(operation=operation, result=result).inc()


# Export singleton instance
metrics = MetricsCollector()
