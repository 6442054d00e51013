"""
Tests for the order lifecycle engine.
"""
import asyncio
import re
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from marketorders.core.exceptions import (
    AlreadyCancelled,
    AlreadyConfirmed,
    InsufficientStock,
    InvalidStatusTransition,
    NotEligibleForExtension,
    OperationTimeout,
    OrderNotFound,
    ProductUnavailable,
    ValidationFailed,
)
from marketorders.core.security import Actor
from marketorders.models.order import OrderStatus, PaymentStatus
from marketorders.models.product import ProductStatus, StockStatus
from marketorders.services.events import EventType
from marketorders.services.order_lifecycle import OrderLifecycleEngine


class TestCreateOrder:
    """Tests for order creation."""

    async def test_last_units_sell_out_the_product(self, order_engine, make_product, read_stock, order_request):
        """Test buying the last units marks the product out of stock."""
        product = await make_product(quantity=2)

        order = await order_engine.create_order(order_request((product.id, 2)))

        assert order.status == OrderStatus.PAYMENT_PENDING.value
        assert order.items[0].reserved_quantity == 2
        assert await read_stock(product.id) == (0, StockStatus.OUT_OF_STOCK.value)

    async def test_moncash_order_initial_state(self, order_engine, make_product, order_request, clock):
        """Test a MonCash order starts payment-pending."""
        product = await make_product(quantity=10, price="150.00")

        order = await order_engine.create_order(order_request((product.id, 3)))

        assert re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{5}", order.order_number)
        assert order.payment_method == "moncash"
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.payment_payer_name == "Marie Joseph"
        assert order.expires_at == clock() + timedelta(hours=72)
        assert order.customer_email == "marie.joseph@example.com"
        assert order.subtotal == Decimal("450.00")
        assert order.shipping_cost == Decimal("50.00")
        assert order.tax == Decimal("45.00")
        assert order.total == Decimal("545.00")
        assert order.payment_amount == order.total
        assert [entry.status for entry in order.timeline] == [OrderStatus.PAYMENT_PENDING.value]

    async def test_confirmation_number_order_initial_state(self, order_engine, make_product, order_request, clock):
        """Test a confirmation-number order starts payment-submitted."""
        product = await make_product()

        order = await order_engine.place_order_with_confirmation(
            order_request((product.id, 1), method="confirmation_number")
        )

        assert order.status == OrderStatus.PENDING_CONFIRMATION.value
        assert order.payment_status == PaymentStatus.PENDING_CONFIRMATION.value
        assert order.payment_confirmation_number == "MC-123456"
        assert order.payment_amount is None
        assert order.expires_at == clock() + timedelta(hours=48)

    async def test_creation_publishes_events_after_commit(self, order_engine, make_product, order_request, publisher):
        """Test creation publishes events after commit."""
        product = await make_product()

        order = await order_engine.create_order(order_request((product.id, 1)))

        assert publisher.types() == [EventType.NEW_ORDER, EventType.PAYMENT_CONFIRMATION_REQUESTED]
        event = publisher.events[0]
        assert event.order_number == order.order_number
        assert event.payload["customer_email"] == "marie.joseph@example.com"
        assert event.payload["total"] == str(order.total)

    async def test_variant_price_comes_from_catalog(self, order_engine, make_product, read_stock, order_request):
        """Test variant prices come from the catalog."""
        product = await make_product(
            price="200.00",
            variants=[{"name": "Size", "value": "XL", "quantity": 4, "price_adjustment": "25.50", "sku": "TS-XL"}],
        )

        order = await order_engine.create_order(order_request((product.id, 2, "XL")))

        item = order.items[0]
        assert item.variant_name == "Size"
        assert item.variant_value == "XL"
        assert item.variant_price_adjustment == Decimal("25.50")
        assert item.unit_price == Decimal("225.50")
        assert item.total_price == Decimal("451.00")
        assert item.product_sku == "TS-XL"
        assert (await read_stock(product.id, "XL"))[0] == 2
        assert (await read_stock(product.id))[0] == 10

    async def test_billing_defaults_to_shipping(self, order_engine, make_product, order_request):
        """Test billing defaults to the shipping address."""
        product = await make_product()

        order = await order_engine.create_order(order_request((product.id, 1)))

        assert order.billing_address == order.shipping_address
        assert order.shipping_address["country"] == "Haiti"

    async def test_separate_billing_address_is_kept(self, order_engine, make_product, order_request):
        """Test a separate billing address is kept."""
        product = await make_product()

        order = await order_engine.create_order(
            order_request(
                (product.id, 1),
                billing_address={"street": "5 Rue Pavee", "city": "Cap-Haitien", "same_as_shipping": False},
            )
        )

        assert order.billing_address["city"] == "Cap-Haitien"
        assert "same_as_shipping" not in order.billing_address

    async def test_free_shipping_above_threshold(self, order_engine, make_product, order_request):
        """Test free shipping above the threshold."""
        product = await make_product(price="600.00")

        order = await order_engine.create_order(order_request((product.id, 2)))

        assert order.shipping_cost == Decimal("0.00")
        assert order.total == Decimal("1320.00")

    async def test_inactive_product_is_unavailable(self, order_engine, make_product, order_request):
        """Test inactive products are unavailable."""
        product = await make_product(status=ProductStatus.DRAFT.value)

        with pytest.raises(ProductUnavailable):
            await order_engine.create_order(order_request((product.id, 1)))

    async def test_unknown_product_is_unavailable(self, order_engine, order_request):
        """Test unknown products are unavailable."""
        with pytest.raises(ProductUnavailable):
            await order_engine.create_order(order_request((uuid4(), 1)))

    async def test_unknown_variant_is_unavailable(self, order_engine, make_product, order_request):
        """Test unknown variants are unavailable."""
        product = await make_product(variants=[{"value": "M", "quantity": 3}])

        with pytest.raises(ProductUnavailable):
            await order_engine.create_order(order_request((product.id, 1, "XXL")))

    async def test_failed_line_rolls_back_earlier_reservations(
        self, order_engine, make_product, read_stock, order_request, publisher
    ):
        """Test a failed line rolls back earlier reservations."""
        plenty = await make_product(quantity=10, name="Plenty")
        scarce = await make_product(quantity=1, name="Scarce")

        with pytest.raises(InsufficientStock) as exc_info:
            await order_engine.create_order(order_request((plenty.id, 4), (scarce.id, 2)))

        assert exc_info.value.context["product_id"] == str(scarce.id)
        assert exc_info.value.context["available"] == 1
        assert (await read_stock(plenty.id))[0] == 10
        assert (await read_stock(scarce.id))[0] == 1
        assert publisher.events == []
        orders, total = await order_engine.list_orders()
        assert total == 0

    async def test_backorder_order_records_units_actually_taken(
        self, order_engine, make_product, read_stock, order_request
    ):
        """Test backorder lines record the units actually taken."""
        product = await make_product(quantity=1, allow_backorder=True)

        order = await order_engine.create_order(order_request((product.id, 3)))

        assert order.items[0].quantity == 3
        assert order.items[0].reserved_quantity == 1
        assert await read_stock(product.id) == (0, StockStatus.BACKORDER.value)

    async def test_timeout_rolls_back(self, session_factory, publisher, clock, make_product, read_stock, order_request):
        """Test a timed out creation rolls back."""
        from marketorders.core.config import settings

        product = await make_product(quantity=5)
        engine = OrderLifecycleEngine(
            session_factory,
            publisher=publisher,
            config=settings.model_copy(update={"order_create_timeout_seconds": 0.05}),
            clock=clock,
        )
        original = engine._stage_order

        async def slow_stage(*args, **kwargs):
            order = await original(*args, **kwargs)
            await asyncio.sleep(1)
            return order

        engine._stage_order = slow_stage

        with pytest.raises(OperationTimeout):
            await engine.create_order(order_request((product.id, 2)))

        assert (await read_stock(product.id))[0] == 5
        assert publisher.events == []


class TestConfirmPayment:
    """Tests for payment confirmation."""

    async def test_confirm_then_confirm_again(self, order_engine, make_product, order_request, admin, publisher, clock):
        """Test confirming payment twice."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))
        assert order.expires_at is not None

        confirmed = await order_engine.confirm_payment(order.id, admin, notes="Checked MonCash statement")

        assert confirmed.status == OrderStatus.CONFIRMED.value
        assert confirmed.expires_at is None
        assert confirmed.payment_status == PaymentStatus.CONFIRMED.value
        assert confirmed.payment_verified_by == "admin-1"
        assert confirmed.paid_at == clock()
        assert confirmed.payment_notes == "Checked MonCash statement"
        assert [e.status for e in confirmed.timeline] == ["payment-pending", "confirmed"]
        assert EventType.PAYMENT_CONFIRMED in publisher.types()

        with pytest.raises(AlreadyConfirmed):
            await order_engine.confirm_payment(order.id, admin)

        reloaded = await order_engine.get_order(order.id)
        assert len(reloaded.timeline) == 2

    async def test_confirm_cancelled_order_is_rejected(self, order_engine, make_product, order_request, admin):
        """Test confirming a cancelled order is rejected."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))
        await order_engine.cancel_order(order.id, "Customer changed their mind", admin)

        with pytest.raises(AlreadyCancelled):
            await order_engine.confirm_payment(order.id, admin)

    async def test_confirm_unknown_order(self, order_engine, admin):
        """Test confirming an unknown order."""
        with pytest.raises(OrderNotFound):
            await order_engine.confirm_payment(uuid4(), admin)


class TestUpdateStatus:
    """Tests for fulfilment status changes."""

    @pytest.fixture
    async def confirmed_order(self, order_engine, make_product, order_request, admin):
        product = await make_product(quantity=5)
        order = await order_engine.create_order(order_request((product.id, 2)))
        await order_engine.confirm_payment(order.id, admin)
        return order, product

    async def test_happy_path_to_delivered(self, order_engine, confirmed_order, admin):
        """Test the happy path through to delivered."""
        order, _ = confirmed_order

        await order_engine.update_status(order.id, OrderStatus.PROCESSING, admin)
        shipped = await order_engine.update_status(
            order.id,
            "shipped",
            admin,
            message="Handed to carrier",
            tracking={"number": "TRK-1", "carrier": "DHL", "url": "https://dhl.example/TRK-1"},
        )
        delivered = await order_engine.update_status(order.id, OrderStatus.DELIVERED, admin)

        assert shipped.tracking_number == "TRK-1"
        assert delivered.status == OrderStatus.DELIVERED.value
        assert delivered.tracking_carrier == "DHL"
        assert delivered.expires_at is None
        assert [e.status for e in delivered.timeline] == [
            "payment-pending",
            "confirmed",
            "processing",
            "shipped",
            "delivered",
        ]
        assert [e.sequence for e in delivered.timeline] == [1, 2, 3, 4, 5]

    async def test_skipping_a_step_is_rejected(self, order_engine, confirmed_order, admin):
        """Test skipping a fulfillment step is rejected."""
        order, _ = confirmed_order

        with pytest.raises(InvalidStatusTransition):
            await order_engine.update_status(order.id, OrderStatus.DELIVERED, admin)

        reloaded = await order_engine.get_order(order.id)
        assert reloaded.status == OrderStatus.CONFIRMED.value
        assert len(reloaded.timeline) == 2

    async def test_forced_transition_is_noted_in_timeline(self, order_engine, confirmed_order, admin):
        """Test forced transitions are noted in the timeline."""
        order, _ = confirmed_order

        updated = await order_engine.update_status(order.id, OrderStatus.SHIPPED, admin, force=True)

        assert updated.status == OrderStatus.SHIPPED.value
        assert "admin override from confirmed" in updated.timeline[-1].message

    async def test_unpaid_order_cannot_be_marked_confirmed(self, order_engine, make_product, order_request, admin):
        """Test an unpaid order cannot be marked confirmed."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))

        with pytest.raises(InvalidStatusTransition):
            await order_engine.update_status(order.id, OrderStatus.CONFIRMED, admin, force=True)

    async def test_cancel_through_status_update_restores_inventory(
        self, order_engine, confirmed_order, admin, read_stock
    ):
        """Test cancelling through a status update restores inventory."""
        order, product = confirmed_order

        cancelled = await order_engine.update_status(order.id, "cancelled", admin, message="Out of delivery zone")

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Out of delivery zone"
        assert (await read_stock(product.id))[0] == 5

    async def test_refund_marks_payment_refunded(self, order_engine, confirmed_order, admin, read_stock):
        """Test a refund marks the payment refunded."""
        order, product = confirmed_order

        refunded = await order_engine.update_status(order.id, OrderStatus.REFUNDED, admin)

        assert refunded.payment_status == PaymentStatus.REFUNDED.value
        assert (await read_stock(product.id))[0] == 3

        with pytest.raises(InvalidStatusTransition):
            await order_engine.cancel_order(order.id, "too late", admin)

    async def test_unknown_status_is_a_validation_error(self, order_engine, confirmed_order, admin):
        """Test an unknown status is a validation error."""
        order, _ = confirmed_order

        with pytest.raises(ValidationFailed):
            await order_engine.update_status(order.id, "lost-in-space", admin)


class TestCancelOrder:
    """Tests for cancellation."""

    async def test_cancel_restores_every_line(self, order_engine, make_product, read_stock, order_request, admin, publisher):
        """Test cancelling restores every line."""
        shirt = await make_product(quantity=5, variants=[{"value": "L", "quantity": 2}])
        cap = await make_product(quantity=3, name="Cap")
        order = await order_engine.create_order(order_request((shirt.id, 2, "L"), (cap.id, 3)))
        assert await read_stock(cap.id) == (0, StockStatus.OUT_OF_STOCK.value)

        cancelled = await order_engine.cancel_order(order.id, "Duplicate order", admin)

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.expires_at is None
        assert cancelled.cancelled_by == "admin-1"
        assert cancelled.refund_issued is False
        assert await read_stock(shirt.id, "L") == (2, StockStatus.LOW_STOCK.value)
        assert await read_stock(cap.id) == (3, StockStatus.LOW_STOCK.value)
        assert publisher.types()[-1] == EventType.ORDER_CANCELLED

    async def test_cancel_twice_leaves_inventory_alone(self, order_engine, make_product, read_stock, order_request, admin):
        """Test a second cancel leaves inventory alone."""
        product = await make_product(quantity=4)
        order = await order_engine.create_order(order_request((product.id, 1)))
        await order_engine.cancel_order(order.id, "first", admin)
        assert (await read_stock(product.id))[0] == 4

        with pytest.raises(AlreadyCancelled):
            await order_engine.cancel_order(order.id, "second", admin)

        assert (await read_stock(product.id))[0] == 4
        reloaded = await order_engine.get_order(order.id)
        assert [e.status for e in reloaded.timeline].count("cancelled") == 1

    async def test_backordered_cancel_restores_only_taken_units(
        self, order_engine, make_product, read_stock, order_request, admin
    ):
        """Test a backordered cancel restores only taken units."""
        product = await make_product(quantity=1, allow_backorder=True)
        order = await order_engine.create_order(order_request((product.id, 4)))

        await order_engine.cancel_order(order.id, "No longer needed", admin)

        assert await read_stock(product.id) == (1, StockStatus.LOW_STOCK.value)

    async def test_cancel_unknown_order(self, order_engine, admin):
        """Test cancelling an unknown order."""
        with pytest.raises(OrderNotFound):
            await order_engine.cancel_order(uuid4(), "nope", admin)


class TestExtendExpiration:
    """Tests for payment window extensions."""

    async def test_extend_pushes_deadline(self, order_engine, make_product, order_request, admin, clock, publisher):
        """Test extending pushes the payment deadline."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))
        original_deadline = order.expires_at
        clock.advance(hours=10)

        extended = await order_engine.extend_expiration(order.id, admin, extra_hours=12, reason="Bank delay")

        assert extended.expires_at == original_deadline + timedelta(hours=12)
        assert extended.extension_count == 1
        assert extended.last_extended_at == clock()
        assert extended.status == OrderStatus.PAYMENT_PENDING.value
        assert "Bank delay" in extended.timeline[-1].message
        assert publisher.types()[-1] == EventType.ORDER_EXPIRATION_EXTENDED

    async def test_default_extension_is_24_hours(self, order_engine, make_product, order_request, admin):
        """Test the default extension is 24 hours."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))

        extended = await order_engine.extend_expiration(order.id, admin)

        assert extended.expires_at == order.expires_at + timedelta(hours=24)

    async def test_paid_order_cannot_be_extended(self, order_engine, make_product, order_request, admin):
        """Test a paid order cannot be extended."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))
        await order_engine.confirm_payment(order.id, admin)

        with pytest.raises(NotEligibleForExtension):
            await order_engine.extend_expiration(order.id, admin, extra_hours=5)

    async def test_non_positive_extension_is_rejected(self, order_engine, make_product, order_request, admin):
        """Test a non-positive extension is rejected."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))

        with pytest.raises(ValidationFailed):
            await order_engine.extend_expiration(order.id, admin, extra_hours=0)


class TestReads:
    """Tests for lookups and listings."""

    async def test_track_order_checks_email_case_insensitively(self, order_engine, make_product, order_request):
        """Test tracking matches email case-insensitively."""
        product = await make_product()
        order = await order_engine.create_order(order_request((product.id, 1)))

        found = await order_engine.track_order(order.order_number, "MARIE.joseph@example.com")
        assert found.id == order.id

        with pytest.raises(OrderNotFound):
            await order_engine.track_order(order.order_number, "someone@else.com")

    async def test_list_orders_filters_and_paginates(self, order_engine, make_product, order_request, admin, clock):
        """Test order listing filters and paginates."""
        product = await make_product(quantity=50)
        first = await order_engine.create_order(order_request((product.id, 1)))
        clock.advance(minutes=1)
        await order_engine.create_order(order_request((product.id, 1), email="jean@example.com"))
        clock.advance(minutes=1)
        third = await order_engine.create_order(order_request((product.id, 1)))
        await order_engine.confirm_payment(first.id, admin)

        orders, total = await order_engine.list_orders(page=1, page_size=2)
        assert total == 3
        assert orders[0].id == third.id

        confirmed, total = await order_engine.list_orders(status="confirmed")
        assert total == 1
        assert confirmed[0].id == first.id

        by_email, total = await order_engine.list_orders(search="JEAN@")
        assert total == 1

    async def test_list_pending_payment(self, order_engine, make_product, order_request, admin):
        """Test listing orders awaiting payment."""
        product = await make_product()
        moncash = await order_engine.create_order(order_request((product.id, 1)))
        code = await order_engine.create_order(order_request((product.id, 1), method="confirmation_number"))
        paid = await order_engine.create_order(order_request((product.id, 1)))
        await order_engine.confirm_payment(paid.id, admin)

        pending = await order_engine.list_pending_payment()

        # confirmation-number orders expire first (48h vs 72h)
        assert [o.id for o in pending] == [code.id, moncash.id]


class TestPublisherIsolation:
    async def test_failing_publisher_does_not_undo_transition(
        self, session_factory, clock, make_product, order_request, admin
    ):
        """Test a failing publisher does not undo a transition."""
        class ExplodingPublisher:
            def publish(self, event):
                raise RuntimeError("socket closed")

        engine = OrderLifecycleEngine(session_factory, publisher=ExplodingPublisher(), clock=clock)
        product = await make_product()

        order = await engine.create_order(order_request((product.id, 1)))
        confirmed = await engine.confirm_payment(order.id, Actor(id="admin-2", role="admin"))

        assert confirmed.status == OrderStatus.CONFIRMED.value
        assert (await engine.get_order(order.id)).status == OrderStatus.CONFIRMED.value
