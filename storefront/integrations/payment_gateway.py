"""
Payment gateway integration.

``SimulatedPaymentGateway`` stands in for an external processor: every call
waits a random latency and a configurable fraction of charges is declined.
Randomness and sleeping are injectable so tests can make it deterministic.
"""
import asyncio
import random
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Protocol, Tuple

import structlog

from storefront.core.domain import (
    PaymentResult,
    RefundResult,
    VerificationResult,
    to_money,
)
from storefront.core.exceptions import PaymentFailedError
from storefront.monitoring.metrics import metrics
from storefront.monitoring.tracing import TraceContext

logger = structlog.get_logger(__name__)

DECLINE_REASONS: Tuple[str, ...] = (
    "insufficient_funds",
    "card_declined",
    "expired_card",
    "invalid_cvv",
)

VERIFY_LATENCY_MS = (50, 150)
REFUND_LATENCY_MS = (200, 500)


class PaymentGateway(Protocol):
    """Contract the order workflow charges through."""

    async def process(
        self, ctx: TraceContext, order_id: int, amount: Decimal, payment_method: str
    ) -> PaymentResult: ...

    async def verify(self, ctx: TraceContext, transaction_id: str) -> VerificationResult: ...

    async def refund(
        self, ctx: TraceContext, transaction_id: str, amount: Decimal
    ) -> RefundResult: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SimulatedPaymentGateway:
    """
    Fake processor with random latency and random declines.

    Args:
        failure_rate: Probability (0-1) that ``process`` declines the charge
        min_latency_ms: Lower bound of the simulated charge latency
        max_latency_ms: Upper bound of the simulated charge latency
        rng: Source of randomness
        sleep: Coroutine used to wait out the latency
    """

    def __init__(
        self,
        failure_rate: float = 0.1,
        min_latency_ms: int = 100,
        max_latency_ms: int = 500,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        if min_latency_ms < 0 or max_latency_ms < min_latency_ms:
            raise ValueError("invalid latency window")

        self.failure_rate = failure_rate
        self.min_latency_ms = min_latency_ms
        self.max_latency_ms = max_latency_ms
        self.rng = rng or random.Random()
        self.sleep = sleep

    async def _wait(self, low_ms: int, high_ms: int) -> int:
        latency_ms = self.rng.randint(low_ms, high_ms) if high_ms > 0 else 0
        if latency_ms:
            await self.sleep(latency_ms / 1000)
        return latency_ms

    async def process(
        self, ctx: TraceContext, order_id: int, amount: Decimal, payment_method: str
    ) -> PaymentResult:
        """
        Charge ``amount`` for ``order_id``.

        Raises:
            PaymentFailedError: The charge was declined
        """
        amount = to_money(amount)
        with ctx.child(
            "payment.process",
            {
                "payment.order_id": order_id,
                "payment.amount": amount,
                "payment.method": payment_method,
            },
        ) as span:
            started = time.perf_counter()
            latency_ms = await self._wait(self.min_latency_ms, self.max_latency_ms)
            span.set_attribute("payment.latency_ms", latency_ms)

            if self.rng.random() < self.failure_rate:
                reason = self.rng.choice(DECLINE_REASONS)
                span.add_event("payment.failed", {"reason": reason, "order_id": order_id})
                metrics.record_payment(payment_method, "failed", time.perf_counter() - started)
                logger.warning(
                    "payment_declined",
                    order_id=order_id,
                    reason=reason,
                    payment_method=payment_method,
                    **span.log_fields(),
                )
                raise PaymentFailedError(reason, order_id=order_id)

            transaction_id = f"txn_{uuid.uuid4().hex[:16]}"
            span.set_attribute("payment.transaction_id", transaction_id)
            span.add_event(
                "payment.succeeded",
                {"transaction_id": transaction_id, "order_id": order_id},
            )
            metrics.record_payment(payment_method, "success", time.perf_counter() - started)
            logger.info(
                "payment_processed",
                order_id=order_id,
                transaction_id=transaction_id,
                amount=str(amount),
                **span.log_fields(),
            )
            return PaymentResult(
                transaction_id=transaction_id,
                amount=amount,
                payment_method=payment_method,
                timestamp=_now(),
            )

    async def verify(self, ctx: TraceContext, transaction_id: str) -> VerificationResult:
        """Confirm a transaction exists. Always succeeds."""
        with ctx.child("payment.verify", {"payment.transaction_id": transaction_id}) as span:
            await self._wait(*VERIFY_LATENCY_MS)
            span.add_event("payment.verified", {"transaction_id": transaction_id})
            return VerificationResult(
                transaction_id=transaction_id, verified=True, timestamp=_now()
            )

    async def refund(
        self, ctx: TraceContext, transaction_id: str, amount: Decimal
    ) -> RefundResult:
        """Refund a previous charge. Always succeeds."""
        amount = to_money(amount)
        with ctx.child(
            "payment.refund",
            {"payment.transaction_id": transaction_id, "payment.amount": amount},
        ) as span:
            await self._wait(*REFUND_LATENCY_MS)
            refund_id = f"ref_{uuid.uuid4().hex[:16]}"
            span.add_event(
                "payment.refunded", {"refund_id": refund_id, "transaction_id": transaction_id}
            )
            logger.info(
                "payment_refunded",
                transaction_id=transaction_id,
                refund_id=refund_id,
                amount=str(amount),
                **span.log_fields(),
            )
            return RefundResult(
                refund_id=refund_id,
                transaction_id=transaction_id,
                amount=amount,
                timestamp=_now(),
            )
