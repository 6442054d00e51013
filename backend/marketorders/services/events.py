"""
Outbound order events.

The lifecycle engine publishes an `OrderEvent` after each committed
transition. Delivery is somebody else's job: publishers must return
immediately and never raise into the engine.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from marketorders.core.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    NEW_ORDER = "new-order"
    PAYMENT_CONFIRMATION_REQUESTED = "payment-confirmation-requested"
    PAYMENT_CONFIRMED = "payment-confirmed"
    ORDER_STATUS_CHANGED = "order-status-changed"
    ORDER_CANCELLED = "order-cancelled"
    ORDER_EXPIRATION_EXTENDED = "order-expiration-extended"


@dataclass(frozen=True)
class OrderEvent:
    type: EventType
    order_id: str
    order_number: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.type.value,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "message": self.message,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


@runtime_checkable
class OrderEventPublisher(Protocol):
    """Fire-and-forget sink for order events."""

    def publish(self, event: OrderEvent) -> None:
        ...


class LoggingPublisher:
    """Publisher that only logs. Used when no notification channel is set up."""

    def publish(self, event: OrderEvent) -> None:
        logger.info(
            "Order event",
            event_type=event.type.value,
            order_number=event.order_number,
        )
