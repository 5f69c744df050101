"""
Error taxonomy for the storefront.

Every error carries a stable machine-readable code and the HTTP status the
API surface maps it to. Nothing in the order workflow retries: each of these
is terminal for the request.
"""
import traceback
from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    """
    Base exception for all storefront errors.

    Attributes:
        message: Human-readable message (safe to show to clients)
        error_code: Stable code clients can switch on
        http_status: Status code used by the API layer
        details: Optional structured payload (offending items, reasons, ...)
    """

    error_code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self, include_stack: bool = False) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        body: Dict[str, Any] = {"message": self.message, "code": self.error_code}
        if self.details is not None:
            body["details"] = self.details
        if include_stack:
            body["stack"] = "".join(
                traceback.format_exception(type(self), self, self.__traceback__)
            )
        return {"error": body}


class NotFoundError(StorefrontError):
    """Missing user, product or order."""

    error_code = "NOT_FOUND"
    http_status = 404


class ValidationError(StorefrontError):
    """Malformed input, rejected before any state is touched."""

    error_code = "VALIDATION_ERROR"
    http_status = 400


class InsufficientInventoryError(StorefrontError):
    """Stock is below the requested quantity for one or more items."""

    error_code = "INSUFFICIENT_INVENTORY"
    http_status = 409

    def __init__(
        self,
        message: str = "Insufficient inventory for one or more items",
        items: Optional[List[Dict[str, Any]]] = None,
        order_id: Optional[int] = None,
    ):
        self.items = items or []
        self.order_id = order_id
        details: Dict[str, Any] | List[Dict[str, Any]] = self.items
        if order_id is not None:
            details = {"order_id": order_id, "items": self.items}
        super().__init__(message, details=details)


class PaymentFailedError(StorefrontError):
    """The payment gateway declined the charge."""

    error_code = "PAYMENT_FAILED"
    http_status = 422

    def __init__(self, reason: str, order_id: Optional[int] = None):
        self.reason = reason
        self.order_id = order_id
        details: Dict[str, Any] = {"reason": reason}
        if order_id is not None:
            details["order_id"] = order_id
        super().__init__(f"Payment failed: {reason}", details=details)


class InternalError(StorefrontError):
    """Unexpected database, cache or programming failure."""

    error_code = "INTERNAL_ERROR"
    http_status = 500
