"""
Order workflow.

Creating an order runs these steps:

1. Validate the user
2. Price every item against the catalogue
3. Advisory availability check (read only)
4. Insert the order and its items (status ``pending``)
5. Reserve inventory        -> on failure the order becomes ``failed``
6. Process payment          -> on failure stock is released and the order
                               becomes ``cancelled``
7. Mark the order ``confirmed`` and return it with the payment result

Steps 5 and 6 run as a saga so the reservation is compensated when the
payment is declined.
"""
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.domain import (
    LineItem,
    OrderStatus,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
    PricedItem,
    money_str,
    to_money,
)
from storefront.core.exceptions import (
    InsufficientInventoryError,
    NotFoundError,
    PaymentFailedError,
    StorefrontError,
    ValidationError,
)
from storefront.core.inventory import InventoryService
from storefront.core.saga import Saga
from storefront.database.models import Order, OrderItem, Product, User
from storefront.integrations.cache import Cache, order_key
from storefront.integrations.payment_gateway import PaymentGateway
from storefront.monitoring.metrics import metrics
from storefront.monitoring.tracing import TraceContext

logger = structlog.get_logger(__name__)

USER_ORDERS_LIMIT = 50

ORDER_COLUMNS = (
    Order.id,
    Order.user_id,
    Order.status,
    Order.total_amount,
    Order.payment_method,
    Order.payment_status,
    Order.created_at,
    Order.updated_at,
)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_order_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Order columns as a JSON-safe dict."""
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "status": row["status"],
        "total_amount": money_str(row["total_amount"]),
        "payment_method": row["payment_method"],
        "payment_status": row["payment_status"],
        "created_at": _isoformat(row["created_at"]),
        "updated_at": _isoformat(row["updated_at"]),
    }


def serialize_order_item(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "order_id": row["order_id"],
        "product_id": row["product_id"],
        "sku": row["sku"],
        "product_name": row["product_name"],
        "quantity": row["quantity"],
        "price": money_str(row["price"]),
        "line_total": money_str(row["price"] * row["quantity"]),
    }


def normalize_items(items: Sequence[LineItem]) -> List[LineItem]:
    """
    Validate requested line items.

    Raises:
        ValidationError: Empty list or non-positive quantity
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    for item in items:
        if item.quantity < 1:
            raise ValidationError(
                "Quantity must be at least 1",
                details={"product_id": item.product_id, "quantity": item.quantity},
            )
    return list(items)


def normalize_payment_method(payment_method: str) -> str:
    try:
        return PaymentMethod(payment_method).value
    except ValueError:
        raise ValidationError(
            f"Unsupported payment method: {payment_method}",
            details={"allowed": [m.value for m in PaymentMethod]},
        ) from None


class OrderWorkflow:
    """
    Creates orders and serves order reads.

    Args:
        session_factory: Database session factory
        cache: Cache for hydrated orders
        inventory: Inventory service used for check / reserve / release
        payment_gateway: Gateway charged for each order
        order_cache_ttl: Seconds a hydrated order stays cached
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        inventory: InventoryService,
        payment_gateway: PaymentGateway,
        order_cache_ttl: int = 120,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.inventory = inventory
        self.payment_gateway = payment_gateway
        self.order_cache_ttl = order_cache_ttl

    async def create_order(
        self,
        ctx: TraceContext,
        user_id: int,
        items: Sequence[LineItem],
        payment_method: str,
    ) -> Dict[str, Any]:
        """
        Run the full order workflow.

        Returns:
            Dict[str, Any]: Hydrated order with a ``payment`` entry

        Raises:
            ValidationError: Bad items or payment method
            NotFoundError: Unknown user or product
            InsufficientInventoryError: Not enough stock (pre-check or reservation)
            PaymentFailedError: Payment declined; stock has been released
        """
        started = time.perf_counter()
        line_items = normalize_items(items)
        method = normalize_payment_method(payment_method)

        with ctx.child(
            "order.create",
            {
                "order.user_id": user_id,
                "order.items_count": len(line_items),
                "order.payment_method": method,
            },
        ) as span:
            try:
                await self._load_user(span, user_id)
                priced = await self._price_items(span, line_items)
                total = to_money(sum((p.line_total for p in priced), Decimal("0")))
                span.set_attribute("order.total_amount", total)

                report = await self.inventory.check_availability(span, line_items)
                if not report.available:
                    raise InsufficientInventoryError(
                        items=[item.to_dict() for item in report.unavailable_items]
                    )

                order_id = await self._insert_order(span, user_id, priced, total, method)
                payment = await self._reserve_and_charge(span, order_id, line_items, total, method)
            except StorefrontError as e:
                metrics.record_order(self._outcome(e), time.perf_counter() - started)
                raise

            await self._set_status(span, order_id, OrderStatus.CONFIRMED, PaymentStatus.COMPLETED)
            span.add_event(
                "order.confirmed",
                {"order_id": order_id, "transaction_id": payment.transaction_id},
            )

            order = await self._fetch_order(span, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            order["payment"] = payment.to_dict()

            duration = time.perf_counter() - started
            metrics.record_order(OrderStatus.CONFIRMED.value, duration, total)
            logger.info(
                "order_created",
                order_id=order_id,
                user_id=user_id,
                total_amount=str(total),
                transaction_id=payment.transaction_id,
                duration_seconds=duration,
                **span.log_fields(),
            )
            return order

    @staticmethod
    def _outcome(error: StorefrontError) -> str:
        if isinstance(error, PaymentFailedError):
            return OrderStatus.CANCELLED.value
        if isinstance(error, InsufficientInventoryError) and error.order_id is not None:
            return OrderStatus.FAILED.value
        return "rejected"

    async def _load_user(self, ctx: TraceContext, user_id: int) -> User:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        ctx.add_event("order.user_validated", {"user_id": user_id})
        return user

    async def _price_items(self, ctx: TraceContext, items: Sequence[LineItem]) -> List[PricedItem]:
        product_ids = {item.product_id for item in items}
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product.id, Product.sku, Product.name, Product.price).where(
                    Product.id.in_(product_ids)
                )
            )
            products = {row.id: row for row in result}

        priced: List[PricedItem] = []
        for item in items:
            product = products.get(item.product_id)
            if product is None:
                raise NotFoundError(f"Product {item.product_id} not found")
            priced.append(
                PricedItem(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name,
                    quantity=item.quantity,
                    unit_price=to_money(product.price),
                )
            )

        ctx.add_event("order.items_priced", {"items_count": len(priced)})
        return priced

    async def _insert_order(
        self,
        ctx: TraceContext,
        user_id: int,
        priced: Sequence[PricedItem],
        total: Decimal,
        payment_method: str,
    ) -> int:
        with ctx.child("order.insert", {"order.user_id": user_id}) as span:
            async with self.session_factory() as session:
                async with session.begin():
                    order = Order(
                        user_id=user_id,
                        status=OrderStatus.PENDING.value,
                        total_amount=total,
                        payment_method=payment_method,
                        payment_status=PaymentStatus.PENDING.value,
                    )
                    order.items = [
                        OrderItem(product_id=p.product_id, quantity=p.quantity, price=p.unit_price)
                        for p in priced
                    ]
                    session.add(order)
                    await session.flush()
                    order_id = order.id

            span.set_attribute("order.id", order_id)
            ctx.set_attribute("order.id", order_id)
            span.add_event("order.created", {"order_id": order_id, "total_amount": total})
            return order_id

    async def _reserve_and_charge(
        self,
        ctx: TraceContext,
        order_id: int,
        items: Sequence[LineItem],
        total: Decimal,
        payment_method: str,
    ) -> PaymentResult:
        async def reserve_inventory(context: Dict[str, Any]) -> Any:
            return await self.inventory.reserve(ctx, order_id, items)

        async def release_inventory(context: Dict[str, Any], result: Any) -> None:
            await self.inventory.release(ctx, order_id, items)
            ctx.add_event("order.inventory_released", {"order_id": order_id})

        async def process_payment(context: Dict[str, Any]) -> PaymentResult:
            return await self.payment_gateway.process(ctx, order_id, total, payment_method)

        saga = Saga(name="create_order", saga_id=f"order-{order_id}")
        saga.add_step("reserve_inventory", reserve_inventory, release_inventory)
        saga.add_step("process_payment", process_payment)

        try:
            context = await saga.execute()
        except Exception as e:
            if saga.failed_step == "reserve_inventory":
                await self._set_status(ctx, order_id, OrderStatus.FAILED, PaymentStatus.PENDING)
                ctx.add_event("order.failed", {"order_id": order_id, "reason": str(e)})
                logger.warning(
                    "order_reservation_failed", order_id=order_id, error=str(e), **ctx.log_fields()
                )
            else:
                await self._set_status(ctx, order_id, OrderStatus.CANCELLED, PaymentStatus.FAILED)
                ctx.add_event(
                    "order.payment_failed",
                    {"order_id": order_id, "reason": getattr(e, "reason", str(e))},
                )
                logger.warning(
                    "order_payment_failed", order_id=order_id, error=str(e), **ctx.log_fields()
                )
            raise

        return context["process_payment_result"]

    async def _set_status(
        self,
        ctx: TraceContext,
        order_id: int,
        status: OrderStatus,
        payment_status: PaymentStatus,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Order)
                    .where(Order.id == order_id)
                    .values(status=status.value, payment_status=payment_status.value)
                    .execution_options(synchronize_session=False)
                )
        ctx.set_attributes({"order.status": status, "order.payment_status": payment_status})
        await self.cache.delete(ctx, order_key(order_id))

    async def _fetch_order(self, ctx: TraceContext, order_id: int) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(*ORDER_COLUMNS, User.email, User.name.label("user_name"))
                    .join(User, User.id == Order.user_id)
                    .where(Order.id == order_id)
                )
            ).mappings().first()
            if row is None:
                return None

            item_rows = (
                await session.execute(
                    select(
                        OrderItem.id,
                        OrderItem.order_id,
                        OrderItem.product_id,
                        Product.sku,
                        Product.name.label("product_name"),
                        OrderItem.quantity,
                        OrderItem.price,
                    )
                    .join(Product, Product.id == OrderItem.product_id)
                    .where(OrderItem.order_id == order_id)
                    .order_by(OrderItem.id)
                )
            ).mappings().all()

        order = serialize_order_row(row)
        order["email"] = row["email"]
        order["user_name"] = row["user_name"]
        order["items"] = [serialize_order_item(item) for item in item_rows]
        return order

    async def get_order(self, ctx: TraceContext, order_id: int) -> Tuple[Dict[str, Any], bool]:
        """
        Fetch a hydrated order, read-through the cache.

        Returns:
            Tuple: ``(order, cached)``

        Raises:
            NotFoundError: Unknown order
        """
        with ctx.child("order.get", {"order.id": order_id}) as span:
            key = order_key(order_id)
            cached = await self.cache.get(span, key)
            if cached is not None:
                span.set_attribute("order.cached", True)
                return cached, True

            order = await self._fetch_order(span, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")

            span.set_attribute("order.cached", False)
            await self.cache.set(span, key, order, self.order_cache_ttl)
            return order, False

    async def list_user_orders(self, ctx: TraceContext, user_id: int) -> List[Dict[str, Any]]:
        """A user's most recent orders, newest first, with their item counts."""
        with ctx.child("order.list_for_user", {"order.user_id": user_id}) as span:
            async with self.session_factory() as session:
                rows = (
                    await session.execute(
                        select(*ORDER_COLUMNS, func.count(OrderItem.id).label("items_count"))
                        .outerjoin(OrderItem, OrderItem.order_id == Order.id)
                        .where(Order.user_id == user_id)
                        .group_by(*ORDER_COLUMNS)
                        .order_by(Order.created_at.desc(), Order.id.desc())
                        .limit(USER_ORDERS_LIMIT)
                    )
                ).mappings().all()

            orders = []
            for row in rows:
                order = serialize_order_row(row)
                order["items_count"] = row["items_count"]
                orders.append(order)

            span.set_attribute("order.count", len(orders))
            return orders
