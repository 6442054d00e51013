"""
Pydantic schemas package for API request/response validation.
"""
from marketorders.schemas.order import (
    CancelOrderRequest,
    ConfirmPaymentRequest,
    ExtendExpirationRequest,
    OrderCreate,
    OrderCreatedResponse,
    OrderResponse,
    PaginatedOrdersResponse,
    PendingPaymentResponse,
    PlaceOrderWithConfirmation,
    StatusUpdateRequest,
    SweepResponse,
    TrackOrderResponse,
)

__all__ = [
    "OrderCreate",
    "PlaceOrderWithConfirmation",
    "ConfirmPaymentRequest",
    "StatusUpdateRequest",
    "CancelOrderRequest",
    "ExtendExpirationRequest",
    "OrderResponse",
    "OrderCreatedResponse",
    "TrackOrderResponse",
    "PaginatedOrdersResponse",
    "PendingPaymentResponse",
    "SweepResponse",
]
