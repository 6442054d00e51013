"""
Order Pydantic schemas for request/response validation.

Bodies are camelCase on the wire; snake_case field names are accepted too.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from marketorders.models.order import Order, OrderStatus, PaymentMethod

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================
# REQUESTS
# ============================================

class OrderItemInput(CamelModel):
    """One requested line: product, quantity and optional variant selector."""

    product_id: UUID
    quantity: int = Field(ge=1, le=1000)
    variant_value: Optional[str] = Field(None, max_length=100)


class CustomerInfo(CamelModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    phone: str = Field(min_length=5, max_length=50)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class CustomerResponse(CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None


class AddressInput(CamelModel):
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: str = Field("Haiti", max_length=100)
    additional_info: Optional[str] = Field(None, max_length=500)
    same_as_shipping: Optional[bool] = None

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(exclude={"same_as_shipping"})


class PaymentInput(CamelModel):
    """Customer's declaration of an out-of-band payment."""

    method: PaymentMethod = PaymentMethod.MONCASH
    confirmation_number: str = Field(min_length=3, max_length=100)
    payer_name: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def require_payer_for_moncash(self) -> "PaymentInput":
        if self.method == PaymentMethod.MONCASH and not self.payer_name:
            raise ValueError("payerName is required for MonCash payments")
        return self


class OrderCreate(CamelModel):
    """Schema for creating an order."""

    items: list[OrderItemInput] = Field(min_length=1, max_length=100)
    customer: CustomerInfo
    shipping_address: AddressInput
    billing_address: Optional[AddressInput] = None
    payment: PaymentInput
    language: Literal["en", "fr"] = "en"
    customer_note: Optional[str] = Field(None, max_length=1000)

    def billing_snapshot(self) -> dict[str, Any]:
        """Billing falls back to shipping unless explicitly different."""
        if self.billing_address is None or self.billing_address.same_as_shipping is not False:
            return self.shipping_address.snapshot()
        return self.billing_address.snapshot()


class PlaceOrderWithConfirmation(CamelModel):
    """Order placed with a bare payment confirmation code."""

    items: list[OrderItemInput] = Field(min_length=1, max_length=100)
    customer: CustomerInfo
    shipping_address: AddressInput
    billing_address: Optional[AddressInput] = None
    confirmation_number: str = Field(min_length=3, max_length=100)
    language: Literal["en", "fr"] = "en"
    customer_note: Optional[str] = Field(None, max_length=1000)

    def to_order_create(self) -> OrderCreate:
        return OrderCreate(
            items=self.items,
            customer=self.customer,
            shipping_address=self.shipping_address,
            billing_address=self.billing_address,
            payment=PaymentInput(
                method=PaymentMethod.CONFIRMATION_NUMBER,
                confirmation_number=self.confirmation_number,
            ),
            language=self.language,
            customer_note=self.customer_note,
        )


class ConfirmPaymentRequest(CamelModel):
    notes: Optional[str] = Field(None, max_length=1000)


class TrackingInput(CamelModel):
    number: str = Field(min_length=1, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)
    url: Optional[str] = None


class StatusUpdateRequest(CamelModel):
    status: OrderStatus
    message: Optional[str] = Field(None, max_length=500)
    tracking: Optional[TrackingInput] = None
    force: bool = False


class CancelOrderRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=500)


class ExtendExpirationRequest(CamelModel):
    hours: Optional[int] = Field(None, gt=0, le=720)
    reason: Optional[str] = Field(None, max_length=500)


# ============================================
# RESPONSES
# ============================================

def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class OrderItemResponse(CamelModel):
    product_id: UUID
    product_name: str
    product_price: float
    product_image: Optional[str] = None
    product_sku: Optional[str] = None
    variant_name: Optional[str] = None
    variant_value: Optional[str] = None
    variant_price_adjustment: float = 0.0
    quantity: int
    unit_price: float
    total_price: float
    reserved_quantity: int


class TimelineEntryResponse(CamelModel):
    status: str
    message: str
    timestamp: datetime
    updated_by: Optional[str] = None


class PricingResponse(CamelModel):
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total: float
    currency: str


class PaymentResponse(CamelModel):
    method: str
    status: str
    confirmation_number: Optional[str] = None
    payer_name: Optional[str] = None
    amount: Optional[float] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None


class TrackingResponse(CamelModel):
    number: Optional[str] = None
    carrier: Optional[str] = None
    url: Optional[str] = None


class CancellationResponse(CamelModel):
    reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refund_issued: bool = False


class OrderResponse(CamelModel):
    """Full order view for admins and the order owner."""

    id: UUID
    order_number: str
    status: str
    customer: CustomerResponse
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    items: list[OrderItemResponse]
    pricing: PricingResponse
    payment: PaymentResponse
    timeline: list[TimelineEntryResponse]
    tracking: Optional[TrackingResponse] = None
    cancellation: Optional[CancellationResponse] = None
    expires_at: Optional[datetime] = None
    extension_count: int = 0
    last_extended_at: Optional[datetime] = None
    language: str
    customer_note: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer=CustomerResponse(
                first_name=order.customer_first_name,
                last_name=order.customer_last_name,
                email=order.customer_email,
                phone=order.customer_phone,
            ),
            shipping_address=order.shipping_address,
            billing_address=order.billing_address,
            items=[
                OrderItemResponse(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_price=_money(item.product_price),
                    product_image=item.product_image,
                    product_sku=item.product_sku,
                    variant_name=item.variant_name,
                    variant_value=item.variant_value,
                    variant_price_adjustment=_money(item.variant_price_adjustment) or 0.0,
                    quantity=item.quantity,
                    unit_price=_money(item.unit_price),
                    total_price=_money(item.total_price),
                    reserved_quantity=item.reserved_quantity,
                )
                for item in order.items
            ],
            pricing=PricingResponse(
                subtotal=_money(order.subtotal),
                shipping=_money(order.shipping_cost),
                tax=_money(order.tax),
                discount=_money(order.discount),
                total=_money(order.total),
                currency=order.currency,
            ),
            payment=PaymentResponse(
                method=order.payment_method,
                status=order.payment_status,
                confirmation_number=order.payment_confirmation_number,
                payer_name=order.payment_payer_name,
                amount=_money(order.payment_amount),
                verified_by=order.payment_verified_by,
                verified_at=order.payment_verified_at,
                paid_at=order.paid_at,
                notes=order.payment_notes,
            ),
            timeline=[timeline_entry(entry) for entry in order.timeline],
            tracking=tracking_of(order),
            cancellation=(
                CancellationResponse(
                    reason=order.cancellation_reason,
                    cancelled_by=order.cancelled_by,
                    cancelled_at=order.cancelled_at,
                    refund_issued=order.refund_issued,
                )
                if order.cancelled_at
                else None
            ),
            expires_at=order.expires_at,
            extension_count=order.extension_count,
            last_extended_at=order.last_extended_at,
            language=order.language,
            customer_note=order.customer_note,
            user_id=order.user_id,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


def timeline_entry(entry: Any) -> TimelineEntryResponse:
    return TimelineEntryResponse(
        status=entry.status,
        message=entry.message,
        timestamp=entry.timestamp,
        updated_by=entry.actor,
    )


def tracking_of(order: Order) -> Optional[TrackingResponse]:
    if not order.tracking_number:
        return None
    return TrackingResponse(
        number=order.tracking_number,
        carrier=order.tracking_carrier,
        url=order.tracking_url,
    )


class OrderCreatedResponse(CamelModel):
    message: str = "Order created successfully"
    order: OrderResponse


class TrackOrderResponse(CamelModel):
    """Public tracking view; no payment or address details."""

    order_number: str
    status: str
    payment_status: str
    timeline: list[TimelineEntryResponse]
    tracking: Optional[TrackingResponse] = None
    total: float
    currency: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    time_until_expiration: Optional[int] = None

    @classmethod
    def from_order(cls, order: Order, now: datetime) -> "TrackOrderResponse":
        return cls(
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            timeline=[timeline_entry(entry) for entry in order.timeline],
            tracking=tracking_of(order),
            total=_money(order.total),
            currency=order.currency,
            created_at=order.created_at,
            expires_at=order.expires_at,
            time_until_expiration=(
                order.seconds_until_expiration(now) if order.expires_at else None
            ),
        )


class PaginatedOrdersResponse(CamelModel):
    items: list[OrderResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class PendingPaymentOrder(CamelModel):
    id: UUID
    order_number: str
    status: str
    customer_email: str
    customer_name: str
    payment_method: str
    payment_confirmation_number: Optional[str] = None
    total: float
    expires_at: Optional[datetime] = None
    hours_remaining: float
    extension_count: int = 0
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order, now: datetime) -> "PendingPaymentOrder":
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer_email=order.customer_email,
            customer_name=order.customer_full_name,
            payment_method=order.payment_method,
            payment_confirmation_number=order.payment_confirmation_number,
            total=_money(order.total),
            expires_at=order.expires_at,
            hours_remaining=round(order.seconds_until_expiration(now) / 3600, 1),
            extension_count=order.extension_count,
            created_at=order.created_at,
        )


class PendingPaymentResponse(CamelModel):
    orders: list[PendingPaymentOrder]
    count: int


class SweepResponse(CamelModel):
    examined: int
    cancelled: int
    skipped: int
    failed: int
