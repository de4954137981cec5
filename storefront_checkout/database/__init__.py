"""Database package for the checkout service."""
from .connection import Database, build_engine
from .models import (
    Base,
    Order,
    OrderItem,
    Product,
    StockAdjustment,
)
from .repositories import SqlCatalogStore, SqlOrderStore

__all__ = [
    "Base",
    "Database",
    "Order",
    "OrderItem",
    "Product",
    "SqlCatalogStore",
    "SqlOrderStore",
    "StockAdjustment",
    "build_engine",
]
