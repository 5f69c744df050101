"""Sample catalogue and customers for local runs and load tests."""
from decimal import Decimal
from typing import Any, Dict, List

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.database.models import Product, User

logger = structlog.get_logger(__name__)

SEED_USERS: List[Dict[str, Any]] = [
    {"email": "john@example.com", "name": "John Doe"},
    {"email": "jane@example.com", "name": "Jane Smith"},
    {"email": "bob@example.com", "name": "Bob Johnson"},
]

SEED_PRODUCTS: List[Dict[str, Any]] = [
    {
        "sku": "LAPTOP-001",
        "name": "Premium Laptop",
        "description": "High-performance laptop with 16GB RAM",
        "price": Decimal("1299.99"),
        "stock_quantity": 50,
    },
    {
        "sku": "PHONE-001",
        "name": "Smartphone Pro",
        "description": "Latest smartphone with 5G capability",
        "price": Decimal("899.99"),
        "stock_quantity": 100,
    },
    {
        "sku": "TABLET-001",
        "name": "Tablet Plus",
        "description": "10-inch tablet with stylus support",
        "price": Decimal("599.99"),
        "stock_quantity": 75,
    },
    {
        "sku": "HEADPHONE-001",
        "name": "Wireless Headphones",
        "description": "Noise-canceling over-ear headphones",
        "price": Decimal("249.99"),
        "stock_quantity": 200,
    },
    {
        "sku": "WATCH-001",
        "name": "Smart Watch",
        "description": "Fitness tracking smartwatch",
        "price": Decimal("349.99"),
        "stock_quantity": 150,
    },
    {
        "sku": "KEYBOARD-001",
        "name": "Mechanical Keyboard",
        "description": "RGB backlit mechanical keyboard",
        "price": Decimal("129.99"),
        "stock_quantity": 80,
    },
    {
        "sku": "MOUSE-001",
        "name": "Gaming Mouse",
        "description": "Wireless gaming mouse with RGB",
        "price": Decimal("79.99"),
        "stock_quantity": 120,
    },
    {
        "sku": "MONITOR-001",
        "name": "4K Monitor",
        "description": "27-inch 4K IPS display",
        "price": Decimal("499.99"),
        "stock_quantity": 40,
    },
    {
        "sku": "SPEAKER-001",
        "name": "Bluetooth Speaker",
        "description": "Portable waterproof speaker",
        "price": Decimal("89.99"),
        "stock_quantity": 180,
    },
    {
        "sku": "CAMERA-001",
        "name": "Digital Camera",
        "description": "Mirrorless camera with 24MP sensor",
        "price": Decimal("1499.99"),
        "stock_quantity": 30,
    },
]


async def seed_database(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, int]:
    """
    Insert the sample users and products.

    Rows whose email / SKU already exist are skipped, so the seed can be
    re-run against a populated database.

    Returns:
        Dict[str, int]: Number of users and products inserted
    """
    async with session_factory() as session:
        async with session.begin():
            existing_emails = set(
                (await session.execute(select(User.email))).scalars().all()
            )
            existing_skus = set((await session.execute(select(Product.sku))).scalars().all())

            users = [User(**row) for row in SEED_USERS if row["email"] not in existing_emails]
            products = [
                Product(**row) for row in SEED_PRODUCTS if row["sku"] not in existing_skus
            ]
            session.add_all(users)
            session.add_all(products)

    logger.info("database_seeded", users_inserted=len(users), products_inserted=len(products))
    return {"users": len(users), "products": len(products)}
