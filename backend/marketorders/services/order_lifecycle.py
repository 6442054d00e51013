"""
Order Lifecycle Engine - the only writer of order status.

Every operation runs as one database transaction:
- creation reserves inventory for each line and inserts the order; any
  failure rolls every reservation back with it
- transitions load the order, check the precondition against its current
  status and write it back guarded by the `version` column; a concurrent
  writer makes the commit fail and the operation is retried from a fresh
  read, where the precondition is checked again
- events are published only after the commit succeeded
"""
import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from marketorders.core.config import Settings, settings
from marketorders.core.exceptions import (
    AccessDenied,
    AlreadyCancelled,
    AlreadyConfirmed,
    InvalidStatusTransition,
    NotEligibleForExtension,
    OperationTimeout,
    OrderNotFound,
    OrderServiceError,
    PersistenceError,
    ProductUnavailable,
    ValidationFailed,
)
from marketorders.core.logging import bind_order_context, clear_order_context, get_logger
from marketorders.core.security import Actor
from marketorders.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderTimelineEntry,
    PaymentMethod,
    PaymentStatus,
)
from marketorders.models.product import Product
from marketorders.repositories.order import OrderRepository
from marketorders.schemas.order import OrderCreate
from marketorders.services.events import EventType, LoggingPublisher, OrderEvent, OrderEventPublisher
from marketorders.services.inventory_ledger import InventoryLedger, Reservation
from marketorders.services.order_numbers import generate_order_number
from marketorders.services.pricing import calculate_pricing, line_total, to_money
from marketorders.services.state_machine import check_transition, is_terminal, is_unpaid

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Mutation = Callable[[AsyncSession, Order], Awaitable[list[OrderEvent]]]

# Status and payment status an order starts in, per payment method
INITIAL_STATE: dict[PaymentMethod, tuple[OrderStatus, PaymentStatus]] = {
    PaymentMethod.MONCASH: (OrderStatus.PAYMENT_PENDING, PaymentStatus.PENDING),
    PaymentMethod.CONFIRMATION_NUMBER: (
        OrderStatus.PENDING_CONFIRMATION,
        PaymentStatus.PENDING_CONFIRMATION,
    ),
}

ORDER_NUMBER_ATTEMPTS = 5


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def lock_order(product_id: UUID, variant_value: Optional[str]) -> tuple[UUID, str]:
    """Sort key giving every transaction the same inventory row order."""
    return product_id, variant_value or ""


class OrderLifecycleEngine:
    """Create orders and move them through their lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Optional[OrderEventPublisher] = None,
        config: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session_factory = session_factory
        self.publisher = publisher or LoggingPublisher()
        self.config = config or settings
        self.clock = clock or system_clock

    def now(self) -> datetime:
        return self.clock()

    # ============================================
    # CREATION
    # ============================================

    async def create_order(self, data: OrderCreate, actor: Optional[Actor] = None) -> Order:
        """
        Validate items, reserve inventory and persist a new order.

        Raises:
            ProductUnavailable: product missing, inactive or unknown variant
            InsufficientStock: not enough units and no backorder
            OperationTimeout: the unit of work did not finish in time
        """
        timeout = self.config.order_create_timeout_seconds
        try:
            order = await asyncio.wait_for(self._create(data, actor), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Order creation timed out", timeout_seconds=timeout)
            raise OperationTimeout(
                "Order creation did not complete in time",
                timeout_seconds=timeout,
            )

        self._publish(
            order,
            EventType.NEW_ORDER,
            f"New order {order.order_number} from {order.customer_full_name}",
        )
        self._publish(
            order,
            EventType.PAYMENT_CONFIRMATION_REQUESTED,
            f"Order {order.order_number} is waiting for payment verification",
        )
        return order

    async def place_order_with_confirmation(
        self,
        data: OrderCreate,
        actor: Optional[Actor] = None,
    ) -> Order:
        """Create an order paid with a bare confirmation code."""
        if data.payment.method != PaymentMethod.CONFIRMATION_NUMBER:
            data = data.model_copy(
                update={
                    "payment": data.payment.model_copy(
                        update={"method": PaymentMethod.CONFIRMATION_NUMBER}
                    )
                }
            )
        return await self.create_order(data, actor)

    async def _create(self, data: OrderCreate, actor: Optional[Actor]) -> Order:
        reservations: list[Reservation] = []
        async with self.session_factory() as session:
            try:
                order = await self._stage_order(session, data, actor, reservations)
                await session.commit()
            except SQLAlchemyError as exc:
                await self._rollback_creation(session, reservations)
                logger.error("Order creation failed in the database", error=str(exc))
                raise PersistenceError("Could not persist order", error=str(exc)) from exc
            except BaseException:
                # Business errors, timeouts and cancellation all undo the reservations
                await self._rollback_creation(session, reservations)
                raise

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status,
            total=str(order.total),
            items=len(order.items),
        )
        return order

    async def _rollback_creation(
        self,
        session: AsyncSession,
        reservations: list[Reservation],
    ) -> None:
        try:
            await session.rollback()
        except Exception as exc:
            logger.critical(
                "Order creation rollback failed, manual reconciliation required",
                reservations=[
                    {
                        "product_id": str(r.product_id),
                        "variant": r.variant_value,
                        "reserved": r.reserved,
                    }
                    for r in reservations
                ],
                error=str(exc),
            )
            raise PersistenceError(
                "Order creation could not be rolled back",
                reservations=len(reservations),
            ) from exc

    async def _stage_order(
        self,
        session: AsyncSession,
        data: OrderCreate,
        actor: Optional[Actor],
        reservations: list[Reservation],
    ) -> Order:
        now = self.now()
        method = PaymentMethod(data.payment.method)
        try:
            window = self.config.payment_window_for(method.value)
        except ValueError as exc:
            raise ValidationFailed(str(exc), payment_method=method.value) from exc

        ledger = InventoryLedger(session, max_attempts=self.config.inventory_cas_max_attempts)
        items: list[OrderItem] = []

        # Rows are locked in a fixed order so concurrent orders cannot deadlock
        lines = sorted(
            enumerate(data.items),
            key=lambda line: lock_order(line[1].product_id, line[1].variant_value),
        )
        for position, requested in lines:
            product = await session.get(Product, requested.product_id)
            if product is None or not product.is_active:
                raise ProductUnavailable(str(requested.product_id))

            variant = None
            if requested.variant_value is not None:
                variant = product.find_variant(requested.variant_value)
                if variant is None:
                    raise ProductUnavailable(
                        str(product.id),
                        reason=f"not available as {requested.variant_value!r}",
                    )

            reservation = await ledger.reserve(product, requested.quantity, requested.variant_value)
            reservations.append(reservation)

            adjustment = variant.price_adjustment if variant else Decimal("0")
            unit_price = to_money(product.price + adjustment)
            items.append(
                OrderItem(
                    position=position,
                    product_id=product.id,
                    product_name=product.name,
                    product_price=product.price,
                    product_image=product.image_url,
                    product_sku=(variant.sku if variant and variant.sku else product.sku),
                    variant_name=variant.name if variant else None,
                    variant_value=variant.value if variant else None,
                    variant_price_adjustment=adjustment,
                    quantity=requested.quantity,
                    unit_price=unit_price,
                    total_price=line_total(unit_price, requested.quantity),
                    reserved_quantity=reservation.reserved,
                )
            )
        items.sort(key=lambda item: item.position)

        pricing = calculate_pricing(
            [item.total_price for item in items],
            free_shipping_threshold=self.config.free_shipping_threshold,
            flat_shipping_fee=self.config.flat_shipping_fee,
            tax_rate=self.config.tax_rate,
        )
        status, payment_status = INITIAL_STATE[method]
        repo = OrderRepository(session)

        order = Order(
            order_number=await self._new_order_number(repo, now),
            user_id=actor.id if actor else None,
            customer_first_name=data.customer.first_name,
            customer_last_name=data.customer.last_name,
            customer_email=data.customer.email,
            customer_phone=data.customer.phone,
            shipping_address=data.shipping_address.snapshot(),
            billing_address=data.billing_snapshot(),
            subtotal=pricing.subtotal,
            shipping_cost=pricing.shipping_cost,
            tax=pricing.tax,
            discount=pricing.discount,
            total=pricing.total,
            currency=self.config.currency,
            payment_method=method.value,
            payment_status=payment_status.value,
            payment_confirmation_number=data.payment.confirmation_number,
            payment_payer_name=data.payment.payer_name,
            payment_amount=pricing.total if method == PaymentMethod.MONCASH else None,
            status=status.value,
            expires_at=now + timedelta(hours=window),
            extension_count=0,
            refund_issued=False,
            customer_note=data.customer_note,
            language=data.language,
            created_at=now,
            updated_at=now,
        )
        order.items = items
        order.timeline = []
        self._append_timeline(
            order,
            status,
            f"Order placed, awaiting payment verification ({window}h window)",
            actor.id if actor else None,
            now,
        )
        await repo.add(order)
        return order

    async def _new_order_number(self, repo: OrderRepository, now: datetime) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number(now, self.config.order_number_prefix)
            if not await repo.number_exists(candidate):
                return candidate
        raise PersistenceError("Could not allocate a unique order number")

    # ============================================
    # TRANSITIONS
    # ============================================

    async def confirm_payment(
        self,
        order_id: UUID,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Order:
        """Record admin verification of the payment and confirm the order."""

        async def mutate(session: AsyncSession, order: Order) -> list[OrderEvent]:
            if order.status == OrderStatus.CANCELLED.value:
                raise AlreadyCancelled(order.order_number)
            if order.payment_status == PaymentStatus.CONFIRMED.value:
                raise AlreadyConfirmed(order.order_number)
            if not is_unpaid(order.status):
                raise InvalidStatusTransition(
                    order.order_number,
                    order.status,
                    OrderStatus.CONFIRMED.value,
                    hint="only unpaid orders can have their payment confirmed",
                )

            now = self.now()
            previous = order.status
            order.payment_status = PaymentStatus.CONFIRMED.value
            order.payment_verified_by = actor.id
            order.payment_verified_at = now
            order.paid_at = now
            order.payment_notes = notes
            order.status = OrderStatus.CONFIRMED.value
            order.expires_at = None
            order.updated_at = now

            message = "Payment confirmed"
            if notes:
                message = f"{message}: {notes}"
            self._append_timeline(order, OrderStatus.CONFIRMED, message, actor.id, now)

            return [
                self._event(order, EventType.PAYMENT_CONFIRMED, f"Payment confirmed for order {order.order_number}"),
                self._event(
                    order,
                    EventType.ORDER_STATUS_CHANGED,
                    f"Order {order.order_number} is now confirmed",
                    previous_status=previous,
                ),
            ]

        return await self._write(order_id, mutate, operation="confirm_payment")

    async def update_status(
        self,
        order_id: UUID,
        new_status: OrderStatus | str,
        actor: Actor,
        message: Optional[str] = None,
        tracking: Optional[dict[str, Any]] = None,
        force: bool = False,
    ) -> Order:
        """
        Move an order along the fulfilment path.

        Cancellation is routed to `cancel_order` so inventory comes back.
        `force` lets an admin correct a paid order's status out of table
        order; it never touches unpaid or cancelled orders.
        """
        try:
            new_status = OrderStatus(new_status)
        except ValueError as exc:
            raise ValidationFailed(f"Unknown order status {new_status!r}", status=str(new_status)) from exc

        if new_status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, message or "Cancelled by admin", actor)

        async def mutate(session: AsyncSession, order: Order) -> list[OrderEvent]:
            overridden = check_transition(order.order_number, order.status, new_status, force=force)
            now = self.now()
            previous = order.status

            if overridden:
                logger.warning(
                    "Admin override of order status",
                    order_number=order.order_number,
                    current=previous,
                    requested=new_status.value,
                    actor=actor.id,
                )

            order.status = new_status.value
            order.updated_at = now
            if new_status == OrderStatus.REFUNDED:
                order.payment_status = PaymentStatus.REFUNDED.value
            if tracking:
                order.tracking_number = tracking.get("number") or order.tracking_number
                order.tracking_carrier = tracking.get("carrier") or order.tracking_carrier
                order.tracking_url = tracking.get("url") or order.tracking_url

            text = message or f"Status updated to {new_status.value}"
            if overridden:
                text = f"{text} (admin override from {previous})"
            self._append_timeline(order, new_status, text, actor.id, now)

            return [
                self._event(
                    order,
                    EventType.ORDER_STATUS_CHANGED,
                    f"Order {order.order_number} is now {new_status.value}",
                    previous_status=previous,
                    tracking_number=order.tracking_number,
                )
            ]

        return await self._write(order_id, mutate, operation="update_status")

    async def cancel_order(
        self,
        order_id: UUID,
        reason: str,
        actor: Actor,
        *,
        expired_as_of: Optional[datetime] = None,
    ) -> Order:
        """
        Cancel an order and give its reserved inventory back.

        This is the only path that restores inventory. With `expired_as_of`
        the cancellation only goes ahead if the order is still unpaid and its
        deadline is not later than that instant (used by the sweeper).
        """

        async def mutate(session: AsyncSession, order: Order) -> list[OrderEvent]:
            if order.status == OrderStatus.CANCELLED.value:
                raise AlreadyCancelled(order.order_number)
            if is_terminal(order.status):
                raise InvalidStatusTransition(
                    order.order_number,
                    order.status,
                    OrderStatus.CANCELLED.value,
                    hint=f"order is already {order.status}",
                )
            if expired_as_of is not None and not (
                is_unpaid(order.status)
                and order.expires_at is not None
                and order.expires_at <= expired_as_of
            ):
                raise InvalidStatusTransition(
                    order.order_number,
                    order.status,
                    OrderStatus.CANCELLED.value,
                    hint="order is no longer past its payment deadline",
                )

            ledger = InventoryLedger(session, max_attempts=self.config.inventory_cas_max_attempts)
            for item in sorted(order.items, key=lambda i: lock_order(i.product_id, i.variant_value)):
                await ledger.release(item.product_id, item.reserved_quantity, item.variant_value)

            now = self.now()
            previous = order.status
            order.status = OrderStatus.CANCELLED.value
            order.expires_at = None
            order.cancellation_reason = reason
            order.cancelled_by = actor.id
            order.cancelled_at = now
            order.refund_issued = False
            order.updated_at = now
            self._append_timeline(order, OrderStatus.CANCELLED, f"Order cancelled: {reason}", actor.id, now)

            return [
                self._event(
                    order,
                    EventType.ORDER_CANCELLED,
                    f"Order {order.order_number} was cancelled: {reason}",
                    previous_status=previous,
                    reason=reason,
                )
            ]

        return await self._write(order_id, mutate, operation="cancel_order")

    async def extend_expiration(
        self,
        order_id: UUID,
        actor: Actor,
        extra_hours: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Order:
        """Push an unpaid order's payment deadline back."""
        hours = self.config.default_extension_hours if extra_hours is None else extra_hours
        if hours <= 0:
            raise ValidationFailed("Extension must be a positive number of hours", hours=hours)

        async def mutate(session: AsyncSession, order: Order) -> list[OrderEvent]:
            if not is_unpaid(order.status):
                raise NotEligibleForExtension(order.order_number, order.status)

            now = self.now()
            base = order.expires_at or now
            order.expires_at = base + timedelta(hours=hours)
            order.extension_count = (order.extension_count or 0) + 1
            order.last_extended_at = now
            order.updated_at = now

            message = f"Payment window extended by {hours} hours"
            if reason:
                message = f"{message}. Reason: {reason}"
            self._append_timeline(order, OrderStatus(order.status), message, actor.id, now)

            return [
                self._event(
                    order,
                    EventType.ORDER_EXPIRATION_EXTENDED,
                    f"Order {order.order_number} expiration extended by {hours} hours",
                    hours=hours,
                    reason=reason,
                )
            ]

        return await self._write(order_id, mutate, operation="extend_expiration")

    async def _write(self, order_id: UUID, mutate: Mutation, *, operation: str) -> Order:
        """
        Run `mutate` on a freshly loaded order in its own transaction,
        retrying when another writer committed first.
        """
        attempts = self.config.order_write_max_attempts
        for attempt in range(1, attempts + 1):
            bind_order_context(str(order_id))
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        order = await OrderRepository(session).get_fresh(order_id)
                        if order is None:
                            raise OrderNotFound(str(order_id))
                        events = await mutate(session, order)
            except StaleDataError:
                logger.info(
                    "Order changed concurrently, retrying",
                    operation=operation,
                    attempt=attempt,
                )
                continue
            except OrderServiceError as exc:
                logger.info(
                    "Order operation rejected",
                    operation=operation,
                    error=exc.code,
                )
                raise
            except SQLAlchemyError as exc:
                logger.error("Order write failed", operation=operation, error=str(exc))
                raise PersistenceError("Could not persist order change", error=str(exc)) from exc
            finally:
                clear_order_context()

            logger.info(
                "Order updated",
                operation=operation,
                order_number=order.order_number,
                status=order.status,
            )
            for event in events:
                self._dispatch(event)
            return order

        raise PersistenceError(
            "Order kept changing concurrently",
            order_id=str(order_id),
            attempts=attempts,
        )

    # ============================================
    # READS
    # ============================================

    async def get_order(self, order_id: UUID) -> Order:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
        if order is None:
            raise OrderNotFound(str(order_id))
        return order

    async def get_order_by_number(self, order_number: str) -> Order:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_by_number(order_number)
        if order is None:
            raise OrderNotFound(order_number)
        return order

    async def track_order(self, order_number: str, email: Optional[str] = None) -> Order:
        """Public lookup; a non-matching email looks exactly like a missing order."""
        order = await self.get_order_by_number(order_number)
        if email and order.customer_email != email.strip().lower():
            raise OrderNotFound(order_number)
        return order

    async def list_orders(
        self,
        *,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Order], int]:
        async with self.session_factory() as session:
            return await OrderRepository(session).list_filtered(
                status=status,
                payment_status=payment_status,
                search=search,
                skip=(page - 1) * page_size,
                limit=page_size,
            )

    async def get_order_for_viewer(self, reference: str, viewer: Optional[Actor]) -> Order:
        """
        Look an order up by id or number on behalf of `viewer`.

        Admins see every order and guest orders are visible to anyone holding
        the number; an order placed by a signed-in customer is visible only
        to that customer.

        Raises:
            OrderNotFound: no such order
            AccessDenied: the order belongs to someone else
        """
        try:
            order_id = UUID(reference)
        except ValueError:
            order = await self.get_order_by_number(reference.upper())
        else:
            order = await self.get_order(order_id)

        if viewer is not None and viewer.is_admin:
            return order
        if order.user_id is None or (viewer is not None and viewer.id == order.user_id):
            return order
        raise AccessDenied(
            f"Order {order.order_number} belongs to another customer",
            order=order.order_number,
        )

    async def list_orders_for_user(
        self,
        user_id: str,
        *,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[Order], int]:
        async with self.session_factory() as session:
            return await OrderRepository(session).list_for_user(
                user_id,
                skip=(page - 1) * page_size,
                limit=page_size,
            )

    async def list_pending_payment(self) -> list[Order]:
        async with self.session_factory() as session:
            return await OrderRepository(session).list_unpaid()

    # ============================================
    # HELPERS
    # ============================================

    @staticmethod
    def _append_timeline(
        order: Order,
        status: OrderStatus,
        message: str,
        actor_id: Optional[str],
        now: datetime,
    ) -> None:
        order.timeline.append(
            OrderTimelineEntry(
                sequence=len(order.timeline) + 1,
                status=status.value,
                message=message,
                actor=actor_id,
                timestamp=now,
            )
        )

    def _event(self, order: Order, event_type: EventType, message: str, **extra: Any) -> OrderEvent:
        payload: dict[str, Any] = {
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "customer_email": order.customer_email,
            "customer_name": order.customer_full_name,
            "total": str(order.total),
            "currency": order.currency,
            "language": order.language,
            "expires_at": order.expires_at.isoformat() if order.expires_at else None,
        }
        payload.update(extra)
        return OrderEvent(
            type=event_type,
            order_id=str(order.id),
            order_number=order.order_number,
            message=message,
            payload=payload,
            occurred_at=self.now(),
        )

    def _publish(self, order: Order, event_type: EventType, message: str, **extra: Any) -> None:
        self._dispatch(self._event(order, event_type, message, **extra))

    def _dispatch(self, event: OrderEvent) -> None:
        try:
            self.publisher.publish(event)
        except Exception:
            # Delivery problems never undo a committed transition
            logger.exception(
                "Order event publisher failed",
                event_type=event.type.value,
                order_number=event.order_number,
            )


def build_order_engine(publisher: Optional[OrderEventPublisher] = None) -> OrderLifecycleEngine:
    """Engine wired to the application database."""
    from marketorders.core.database import async_session_factory

    return OrderLifecycleEngine(async_session_factory, publisher=publisher)
