"""
Admin order maintenance routes.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter

from marketorders.routers.deps import AdminActor, OrderEngine
from marketorders.schemas.order import (
    ExtendExpirationRequest,
    OrderResponse,
    PendingPaymentOrder,
    PendingPaymentResponse,
    SweepResponse,
)
from marketorders.services.expiration_sweeper import ExpirationSweeper

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.post("/{order_id}/extend", response_model=OrderResponse)
async def extend_order_expiration(
    order_id: UUID,
    engine: OrderEngine,
    admin: AdminActor,
    body: Optional[ExtendExpirationRequest] = None,
) -> OrderResponse:
    """Give the customer more time to pay."""
    order = await engine.extend_expiration(
        order_id,
        admin,
        extra_hours=body.hours if body else None,
        reason=body.reason if body else None,
    )
    return OrderResponse.from_order(order)


@router.get("/pending-payment", response_model=PendingPaymentResponse)
async def list_pending_payment(engine: OrderEngine, admin: AdminActor) -> PendingPaymentResponse:
    """Unpaid orders with the time left before they expire."""
    now = engine.now()
    orders = await engine.list_pending_payment()
    return PendingPaymentResponse(
        orders=[PendingPaymentOrder.from_order(order, now) for order in orders],
        count=len(orders),
    )


@router.post("/sweep", response_model=SweepResponse)
async def sweep_expired_orders(engine: OrderEngine, admin: AdminActor) -> SweepResponse:
    """Run one expiration sweep now instead of waiting for the schedule."""
    result = await ExpirationSweeper(engine).sweep()
    return SweepResponse(**result.to_dict())
