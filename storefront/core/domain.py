"""Domain value types shared by the services."""
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

CENTS = Decimal("0.01")


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    """Payment lifecycle states recorded on the order."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    """Accepted payment methods."""

    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize an amount to cents."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def money_str(value: Decimal) -> str:
    """Render an amount the way NUMERIC(10, 2) columns are rendered."""
    return str(to_money(value))


@dataclass(frozen=True)
class LineItem:
    """A requested (product, quantity) pair."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedItem:
    """A line item resolved against the catalogue."""

    product_id: int
    sku: str
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ItemAvailability:
    """Requested vs. available stock for one item."""

    product_id: int
    requested: int
    available: int
    sufficient: bool
    sku: Optional[str] = None
    name: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class AvailabilityReport:
    """Result of an advisory availability check."""

    items: List[ItemAvailability] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return all(item.sufficient for item in self.items)

    @property
    def unavailable_items(self) -> List[ItemAvailability]:
        return [item for item in self.items if not item.sufficient]


@dataclass(frozen=True)
class StockChange:
    """Outcome of a reservation or release."""

    order_id: int
    items_count: int
    success: bool = True


@dataclass(frozen=True)
class PaymentResult:
    """Successful charge returned by a payment gateway."""

    transaction_id: str
    amount: Decimal
    payment_method: str
    timestamp: str
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "transaction_id": self.transaction_id,
            "amount": money_str(self.amount),
            "payment_method": self.payment_method,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a transaction verification."""

    transaction_id: str
    verified: bool
    timestamp: str


@dataclass(frozen=True)
class RefundResult:
    """Outcome of a refund."""

    refund_id: str
    transaction_id: str
    amount: Decimal
    timestamp: str
    success: bool = True
