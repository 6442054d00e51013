"""
Services package for business logic layer.
"""
from marketorders.services.events import EventType, OrderEvent, OrderEventPublisher
from marketorders.services.expiration_sweeper import ExpirationSweeper, SweepResult
from marketorders.services.inventory_ledger import InventoryLedger, Reservation, recompute_stock_status
from marketorders.services.notification_service import NotificationDispatcher, NotificationService
from marketorders.services.order_lifecycle import OrderLifecycleEngine, build_order_engine
from marketorders.services.pricing import PricingBreakdown, calculate_pricing

__all__ = [
    "OrderLifecycleEngine",
    "build_order_engine",
    "ExpirationSweeper",
    "SweepResult",
    "InventoryLedger",
    "Reservation",
    "recompute_stock_status",
    "EventType",
    "OrderEvent",
    "OrderEventPublisher",
    "NotificationDispatcher",
    "NotificationService",
    "PricingBreakdown",
    "calculate_pricing",
]
