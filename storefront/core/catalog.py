"""Cached product read paths."""
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.domain import money_str
from storefront.core.exceptions import NotFoundError, ValidationError
from storefront.database.models import Product
from storefront.integrations.cache import Cache, product_key
from storefront.monitoring.tracing import TraceContext

logger = structlog.get_logger(__name__)

ALL_PRODUCTS_KEY = "products:all"


def serialize_product(product: Product) -> Dict[str, Any]:
    """JSON-safe representation, identical whether read from cache or store."""
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "description": product.description,
        "price": money_str(product.price),
        "stock_quantity": product.stock_quantity,
        "created_at": product.created_at.isoformat() if product.created_at else None,
        "updated_at": product.updated_at.isoformat() if product.updated_at else None,
    }


class ProductCatalog:
    """
    Product listing, detail and search.

    Results are cached under ``products:*`` / ``product:{id}``; the inventory
    service drops those keys whenever stock changes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        ttl_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def list_products(self, ctx: TraceContext) -> Tuple[List[Dict[str, Any]], bool]:
        """All products ordered by id. Returns ``(products, cached)``."""
        with ctx.child("catalog.list_products") as span:
            cached = await self.cache.get(span, ALL_PRODUCTS_KEY)
            if cached is not None:
                return cached, True

            async with self.session_factory() as session:
                result = await session.execute(select(Product).order_by(Product.id))
                products = [serialize_product(p) for p in result.scalars()]

            span.set_attribute("catalog.products_count", len(products))
            await self.cache.set(span, ALL_PRODUCTS_KEY, products, self.ttl_seconds)
            return products, False

    async def get_product(self, ctx: TraceContext, product_id: int) -> Tuple[Dict[str, Any], bool]:
        """
        One product. Returns ``(product, cached)``.

        Raises:
            NotFoundError: Unknown product
        """
        with ctx.child("catalog.get_product", {"product.id": product_id}) as span:
            key = product_key(product_id)
            cached = await self.cache.get(span, key)
            if cached is not None:
                return cached, True

            async with self.session_factory() as session:
                product: Optional[Product] = await session.get(Product, product_id)

            if product is None:
                raise NotFoundError(f"Product {product_id} not found")

            data = serialize_product(product)
            await self.cache.set(span, key, data, self.ttl_seconds)
            return data, False

    async def search(self, ctx: TraceContext, query: str) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Case-insensitive match on name or description.

        Raises:
            ValidationError: Empty query
        """
        term = query.strip()
        if not term:
            raise ValidationError("Search query is required")

        with ctx.child("catalog.search", {"catalog.query": term}) as span:
            key = f"products:search:{term.lower()}"
            cached = await self.cache.get(span, key)
            if cached is not None:
                return cached, True

            pattern = f"%{term}%"
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Product)
                    .where(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
                    .order_by(Product.name)
                )
                products = [serialize_product(p) for p in result.scalars()]

            span.set_attribute("catalog.results_count", len(products))
            await self.cache.set(span, key, products, self.ttl_seconds)
            return products, False
