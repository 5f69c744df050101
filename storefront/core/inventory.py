"""
Inventory service.

Stock is only ever decremented by a single conditional UPDATE
(``stock_quantity >= quantity``), which is the authoritative guard against
overselling. ``check_availability`` is a read-only pre-check and can be stale
by the time the reservation runs.
"""
from typing import Any, Dict, List, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.domain import (
    AvailabilityReport,
    ItemAvailability,
    LineItem,
    StockChange,
)
from storefront.core.exceptions import InsufficientInventoryError, NotFoundError
from storefront.database.models import Product
from storefront.integrations.cache import PRODUCT_LISTINGS_PATTERN, Cache, product_key
from storefront.monitoring.metrics import metrics
from storefront.monitoring.tracing import TraceContext

logger = structlog.get_logger(__name__)


class InventoryService:
    """
    Checks and mutates product stock.

    Every mutation commits in one transaction and then invalidates the cached
    product entries it touched.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cache: Cache):
        self.session_factory = session_factory
        self.cache = cache

    async def check_availability(
        self, ctx: TraceContext, items: Sequence[LineItem]
    ) -> AvailabilityReport:
        """
        Compare requested quantities with current stock.

        A missing product is reported as insufficient with reason
        ``product_not_found``. Nothing is mutated.
        """
        with ctx.child("inventory.check_availability", {"inventory.items_count": len(items)}) as span:
            product_ids = {item.product_id for item in items}
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Product.id, Product.sku, Product.name, Product.stock_quantity).where(
                        Product.id.in_(product_ids)
                    )
                )
                products = {row.id: row for row in result}

            report_items: List[ItemAvailability] = []
            for item in items:
                product = products.get(item.product_id)
                if product is None:
                    availability = ItemAvailability(
                        product_id=item.product_id,
                        requested=item.quantity,
                        available=0,
                        sufficient=False,
                        reason="product_not_found",
                    )
                else:
                    availability = ItemAvailability(
                        product_id=item.product_id,
                        requested=item.quantity,
                        available=product.stock_quantity,
                        sufficient=product.stock_quantity >= item.quantity,
                        sku=product.sku,
                        name=product.name,
                    )

                if not availability.sufficient:
                    span.add_event("inventory.insufficient", availability.to_dict())
                report_items.append(availability)

            report = AvailabilityReport(items=report_items)
            span.set_attribute("inventory.available", report.available)
            if report.available:
                span.add_event("inventory.check_passed", {"items_count": len(items)})
            else:
                span.add_event(
                    "inventory.check_failed",
                    {"unavailable_count": len(report.unavailable_items)},
                )
                logger.info(
                    "inventory_check_failed",
                    unavailable=[i.to_dict() for i in report.unavailable_items],
                    **span.log_fields(),
                )
            return report

    async def reserve(
        self, ctx: TraceContext, order_id: int, items: Sequence[LineItem]
    ) -> StockChange:
        """
        Decrement stock for every item, all or nothing.

        Raises:
            InsufficientInventoryError: An item no longer has enough stock;
                the whole reservation is rolled back
        """
        with ctx.child(
            "inventory.reserve",
            {"inventory.order_id": order_id, "inventory.items_count": len(items)},
        ) as span:
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        # Rows are locked in id order so concurrent reservations cannot deadlock
                        for item in sorted(items, key=lambda i: i.product_id):
                            await self._decrement(session, span, order_id, item)
            except InsufficientInventoryError:
                metrics.record_inventory_operation("reserve", "failed")
                raise

            metrics.record_inventory_operation("reserve", "success")
            logger.info(
                "inventory_reserved",
                order_id=order_id,
                items_count=len(items),
                **span.log_fields(),
            )

        await self._invalidate(ctx, items)
        return StockChange(order_id=order_id, items_count=len(items))

    async def _decrement(
        self, session: AsyncSession, span: TraceContext, order_id: int, item: LineItem
    ) -> None:
        stmt = (
            update(Product)
            .where(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
            .values(stock_quantity=Product.stock_quantity - item.quantity)
            .returning(Product.id, Product.sku, Product.stock_quantity)
            .execution_options(synchronize_session=False)
        )
        row = (await session.execute(stmt)).first()

        if row is None:
            available = await session.scalar(
                select(Product.stock_quantity).where(Product.id == item.product_id)
            )
            shortfall: Dict[str, Any] = {
                "product_id": item.product_id,
                "requested": item.quantity,
                "available": available if available is not None else 0,
            }
            if available is None:
                shortfall["reason"] = "product_not_found"
            span.add_event("inventory.reservation_failed", shortfall)
            logger.warning(
                "inventory_reservation_failed", order_id=order_id, **shortfall, **span.log_fields()
            )
            raise InsufficientInventoryError(
                message=f"Insufficient stock for product {item.product_id}",
                items=[shortfall],
                order_id=order_id,
            )

        span.add_event(
            "inventory.reserved",
            {
                "product_id": row.id,
                "sku": row.sku,
                "quantity": item.quantity,
                "remaining": row.stock_quantity,
            },
        )

    async def release(
        self, ctx: TraceContext, order_id: int, items: Sequence[LineItem]
    ) -> StockChange:
        """Return previously reserved stock (compensation)."""
        with ctx.child(
            "inventory.release",
            {"inventory.order_id": order_id, "inventory.items_count": len(items)},
        ) as span:
            async with self.session_factory() as session:
                async with session.begin():
                    for item in sorted(items, key=lambda i: i.product_id):
                        stmt = (
                            update(Product)
                            .where(Product.id == item.product_id)
                            .values(stock_quantity=Product.stock_quantity + item.quantity)
                            .returning(Product.id, Product.sku, Product.stock_quantity)
                            .execution_options(synchronize_session=False)
                        )
                        row = (await session.execute(stmt)).first()
                        span.add_event(
                            "inventory.released",
                            {
                                "product_id": item.product_id,
                                "sku": row.sku if row else None,
                                "quantity": item.quantity,
                                "remaining": row.stock_quantity if row else None,
                            },
                        )

            metrics.record_inventory_operation("release", "success")
            logger.info(
                "inventory_released",
                order_id=order_id,
                items_count=len(items),
                **span.log_fields(),
            )

        await self._invalidate(ctx, items)
        return StockChange(order_id=order_id, items_count=len(items))

    async def get_level(self, ctx: TraceContext, product_id: int) -> Dict[str, Any]:
        """
        Current stock for one product.

        Raises:
            NotFoundError: Unknown product
        """
        with ctx.child("inventory.get_level", {"inventory.product_id": product_id}):
            async with self.session_factory() as session:
                row = (
                    await session.execute(
                        select(Product.id, Product.sku, Product.name, Product.stock_quantity).where(
                            Product.id == product_id
                        )
                    )
                ).first()

            if row is None:
                raise NotFoundError(f"Product {product_id} not found")

            return {
                "product_id": row.id,
                "sku": row.sku,
                "name": row.name,
                "stock_quantity": row.stock_quantity,
            }

    async def _invalidate(self, ctx: TraceContext, items: Sequence[LineItem]) -> None:
        for product_id in sorted({item.product_id for item in items}):
            await self.cache.delete(ctx, product_key(product_id))
        await self.cache.delete_pattern(ctx, PRODUCT_LISTINGS_PATTERN)
