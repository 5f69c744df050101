"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.core.domain import LineItem, PaymentMethod

# Upper bound of a PostgreSQL INTEGER column
MAX_DB_INT = 2**31 - 1


def reject_bool(v: Any) -> Any:
    """JSON booleans are not integers, even though bool subclasses int."""
    if isinstance(v, bool):
        raise ValueError("Input should be a valid integer, got a boolean")
    return v


class OrderItemRequest(BaseModel):
    """One requested line item."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(
        ..., alias="productId", ge=1, le=MAX_DB_INT, description="Product identifier"
    )
    quantity: int = Field(..., ge=1, le=MAX_DB_INT, description="Units to order (at least 1)")

    @field_validator("product_id", "quantity", mode="before")
    @classmethod
    def validate_integers(cls, v: Any) -> Any:
        return reject_bool(v)

    def to_line_item(self) -> LineItem:
        return LineItem(product_id=self.product_id, quantity=self.quantity)


class CreateOrderRequest(BaseModel):
    """Request schema for creating an order."""

    user_id: int = Field(
        ..., alias="userId", ge=1, le=MAX_DB_INT, description="Customer placing the order"
    )
    items: List[OrderItemRequest] = Field(..., min_length=1, description="Line items")
    payment_method: PaymentMethod = Field(
        ..., alias="paymentMethod", description="credit_card, debit_card or paypal"
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "userId": 1,
                    "items": [
                        {"productId": 1, "quantity": 1},
                        {"productId": 4, "quantity": 2},
                    ],
                    "paymentMethod": "credit_card",
                }
            ]
        },
    )

    @field_validator("user_id", mode="before")
    @classmethod
    def validate_user_id(cls, v: Any) -> Any:
        return reject_bool(v)

    def line_items(self) -> List[LineItem]:
        return [item.to_line_item() for item in self.items]


class CreateOrderResponse(BaseModel):
    """Response schema for order creation."""

    order: Dict[str, Any] = Field(..., description="Hydrated order with items and payment")
    message: str = Field(..., description="Human readable outcome")


class OrderLookupResponse(BaseModel):
    """Response schema for a single order."""

    order: Dict[str, Any] = Field(..., description="Hydrated order with items")
    cached: bool = Field(..., description="Whether the order was served from cache")


class UserOrdersResponse(BaseModel):
    """Response schema for a user's orders."""

    orders: List[Dict[str, Any]] = Field(..., description="Orders, newest first")
    count: int = Field(..., description="Number of orders returned")


class ProductListResponse(BaseModel):
    """Response schema for product listings and searches."""

    products: List[Dict[str, Any]] = Field(..., description="Products")
    count: int = Field(..., description="Number of products returned")
    cached: bool = Field(..., description="Whether the result was served from cache")


class ProductResponse(BaseModel):
    """Response schema for a single product."""

    product: Dict[str, Any] = Field(..., description="Product")
    cached: bool = Field(..., description="Whether the product was served from cache")


class InventoryLevelResponse(BaseModel):
    """Response schema for a stock level lookup."""

    product_id: int = Field(..., description="Product identifier")
    sku: str = Field(..., description="Stock keeping unit")
    name: str = Field(..., description="Product name")
    stock_quantity: int = Field(..., description="Units in stock")
