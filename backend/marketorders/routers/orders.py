"""
Order API routes.

Customers place and track orders; admins confirm payments, move orders
along the fulfilment path and cancel them.
"""
import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from marketorders.core.logging import get_logger
from marketorders.models.order import OrderStatus, PaymentStatus
from marketorders.routers.deps import AdminActor, CurrentActor, OptionalActor, OrderEngine
from marketorders.schemas.order import (
    CancelOrderRequest,
    ConfirmPaymentRequest,
    OrderCreate,
    OrderCreatedResponse,
    OrderResponse,
    PaginatedOrdersResponse,
    PlaceOrderWithConfirmation,
    StatusUpdateRequest,
    TrackOrderResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreate,
    engine: OrderEngine,
    actor: OptionalActor,
) -> OrderCreatedResponse:
    """Place an order paid through MonCash (or another declared method)."""
    order = await engine.create_order(body, actor)
    return OrderCreatedResponse(order=OrderResponse.from_order(order))


@router.post(
    "/place-with-confirmation",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def place_order_with_confirmation(
    body: PlaceOrderWithConfirmation,
    engine: OrderEngine,
    actor: OptionalActor,
) -> OrderCreatedResponse:
    """Place an order with a bare payment confirmation code."""
    order = await engine.place_order_with_confirmation(body.to_order_create(), actor)
    return OrderCreatedResponse(
        message="Order placed successfully! Awaiting confirmation.",
        order=OrderResponse.from_order(order),
    )


@router.get("/track/{order_number}", response_model=TrackOrderResponse)
async def track_order(
    order_number: str,
    engine: OrderEngine,
    email: Optional[str] = Query(None, description="Customer email on the order"),
) -> TrackOrderResponse:
    """Public order tracking by order number."""
    order = await engine.track_order(order_number.upper(), email)
    return TrackOrderResponse.from_order(order, engine.now())


@router.get("", response_model=PaginatedOrdersResponse)
async def list_orders(
    engine: OrderEngine,
    admin: AdminActor,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize", description="Items per page"),
    order_status: Optional[OrderStatus] = Query(None, alias="status", description="Filter by status"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    search: Optional[str] = Query(None, max_length=100, description="Order number, email or name"),
) -> PaginatedOrdersResponse:
    """Admin listing of orders, newest first."""
    orders, total = await engine.list_orders(
        status=order_status.value if order_status else None,
        payment_status=payment_status.value if payment_status else None,
        search=search,
        page=page,
        page_size=page_size,
    )
    return PaginatedOrdersResponse(
        items=[OrderResponse.from_order(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/my-orders", response_model=PaginatedOrdersResponse)
async def list_my_orders(
    engine: OrderEngine,
    actor: CurrentActor,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize", description="Items per page"),
) -> PaginatedOrdersResponse:
    """Order history of the signed-in customer, newest first."""
    orders, total = await engine.list_orders_for_user(actor.id, page=page, page_size=page_size)
    return PaginatedOrdersResponse(
        items=[OrderResponse.from_order(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/{order_ref}", response_model=OrderResponse)
async def get_order(order_ref: str, engine: OrderEngine, actor: OptionalActor) -> OrderResponse:
    """
    Full order by id or order number.

    Admins see any order; an order placed while signed in is only shown to
    its owner.
    """
    order = await engine.get_order_for_viewer(order_ref, actor)
    return OrderResponse.from_order(order)


@router.patch("/{order_id}/confirm-payment", response_model=OrderResponse)
async def confirm_payment(
    order_id: UUID,
    engine: OrderEngine,
    admin: AdminActor,
    body: Optional[ConfirmPaymentRequest] = None,
) -> OrderResponse:
    """Mark the out-of-band payment as verified."""
    order = await engine.confirm_payment(order_id, admin, notes=body.notes if body else None)
    return OrderResponse.from_order(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    body: StatusUpdateRequest,
    engine: OrderEngine,
    admin: AdminActor,
) -> OrderResponse:
    order = await engine.update_status(
        order_id,
        body.status,
        admin,
        message=body.message,
        tracking=body.tracking.model_dump() if body.tracking else None,
        force=body.force,
    )
    return OrderResponse.from_order(order)


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    body: CancelOrderRequest,
    engine: OrderEngine,
    admin: AdminActor,
) -> OrderResponse:
    """Cancel an order and restore its inventory."""
    order = await engine.cancel_order(order_id, body.reason, admin)
    return OrderResponse.from_order(order)
