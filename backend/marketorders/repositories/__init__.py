"""
Repository package for data access layer.
"""
from marketorders.repositories.base import BaseRepository
from marketorders.repositories.inventory import InventoryRepository, StockLevel
from marketorders.repositories.order import OrderRepository

__all__ = [
    "BaseRepository",
    "InventoryRepository",
    "OrderRepository",
    "StockLevel",
]
