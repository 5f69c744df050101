"""Database package for the storefront."""
from .connection import create_engine, create_session_factory, init_db
from .models import Base, Order, OrderItem, Product, User
from .seed import seed_database

__all__ = [
    "Base",
    "Order",
    "OrderItem",
    "Product",
    "User",
    "create_engine",
    "create_session_factory",
    "init_db",
    "seed_database",
]
