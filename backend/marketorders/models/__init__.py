"""
SQLAlchemy models package.
All models are imported here for easy access and Alembic discovery.
"""
from marketorders.models.order import (
    TERMINAL_STATUSES,
    UNPAID_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    OrderTimelineEntry,
    PaymentMethod,
    PaymentStatus,
)
from marketorders.models.product import Product, ProductStatus, ProductVariant, StockStatus

__all__ = [
    "Order",
    "OrderItem",
    "OrderTimelineEntry",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "UNPAID_STATUSES",
    "TERMINAL_STATUSES",
    "Product",
    "ProductVariant",
    "ProductStatus",
    "StockStatus",
]
