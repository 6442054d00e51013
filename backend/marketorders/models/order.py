"""
Order aggregate - the order document, its line items and its timeline.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketorders.core.database import Base, UTCDateTime, utcnow

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class OrderStatus(str, Enum):
    """Order lifecycle states. Written only by the lifecycle engine."""

    PENDING_CONFIRMATION = "pending-confirmation"
    PAYMENT_PENDING = "payment-pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


UNPAID_STATUSES = frozenset({OrderStatus.PENDING_CONFIRMATION, OrderStatus.PAYMENT_PENDING})
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})


class PaymentMethod(str, Enum):
    """How the customer declared the out-of-band payment."""

    MONCASH = "moncash"  # confirmation number + payer name + amount
    CONFIRMATION_NUMBER = "confirmation_number"  # bare code, admin verifies


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PENDING_CONFIRMATION = "pending-confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    """Customer order with snapshots, pricing, payment and audit trail."""

    __tablename__ = "orders"
    __table_args__ = (
        # Sweeper candidate selection
        Index("ix_orders_status_expires_at", "status", "expires_at"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    order_number: Mapped[str] = mapped_column(String(40), unique=True, index=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)

    # Customer snapshot (guest checkout friendly)
    customer_first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))

    # Address snapshots
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    billing_address: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="HTG")

    # Payment
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(30), index=True, nullable=False)
    payment_confirmation_number: Mapped[Optional[str]] = mapped_column(String(100))
    payment_payer_name: Mapped[Optional[str]] = mapped_column(String(100))
    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    payment_verified_by: Mapped[Optional[str]] = mapped_column(String(100))
    payment_verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    payment_notes: Mapped[Optional[str]] = mapped_column(Text)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    # Lifecycle
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    extension_count: Mapped[int] = mapped_column(Integer, default=0)
    last_extended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    # Tracking
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    tracking_carrier: Mapped[Optional[str]] = mapped_column(String(100))
    tracking_url: Mapped[Optional[str]] = mapped_column(Text)

    # Cancellation
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(100))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    refund_issued: Mapped[bool] = mapped_column(Boolean, default=False)

    customer_note: Mapped[Optional[str]] = mapped_column(Text)
    language: Mapped[str] = mapped_column(String(2), default="en")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    # Optimistic concurrency: every UPDATE is guarded by the version we read
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )
    timeline: Mapped[list["OrderTimelineEntry"]] = relationship(
        "OrderTimelineEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderTimelineEntry.sequence",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def customer_full_name(self) -> str:
        return f"{self.customer_first_name} {self.customer_last_name}"

    @property
    def is_unpaid(self) -> bool:
        return self.status in {s.value for s in UNPAID_STATUSES}

    def seconds_until_expiration(self, now: datetime) -> int:
        if self.expires_at is None:
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.status}>"


class OrderItem(Base):
    """Line item with an immutable snapshot of the product at order time."""

    __tablename__ = "order_items"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    order_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        index=True,
    )

    # Snapshot
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    product_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    product_image: Mapped[Optional[str]] = mapped_column(Text)
    product_sku: Mapped[Optional[str]] = mapped_column(String(100))

    # Variant selector
    variant_name: Mapped[Optional[str]] = mapped_column(String(100))
    variant_value: Mapped[Optional[str]] = mapped_column(String(100))
    variant_price_adjustment: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # Units actually taken from the ledger; cancellation gives back exactly these
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0)

    order: Mapped[Order] = relationship("Order", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem {self.product_name[:30]} x{self.quantity}>"


class OrderTimelineEntry(Base):
    """Append-only audit log row. Never updated, never deleted."""

    __tablename__ = "order_timeline"
    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_order_timeline_order_sequence"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    order_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    message: Mapped[str] = mapped_column(Text, default="")
    actor: Mapped[Optional[str]] = mapped_column(String(100))
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    order: Mapped[Order] = relationship("Order", back_populates="timeline")

    def __repr__(self) -> str:
        return f"<OrderTimelineEntry #{self.sequence} {self.status}>"
