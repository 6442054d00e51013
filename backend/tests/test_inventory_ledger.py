"""
Tests for the inventory ledger.
"""
import pytest

from marketorders.core.exceptions import InsufficientStock, InventoryContention
from marketorders.models.product import StockStatus
from marketorders.repositories.inventory import InventoryRepository
from marketorders.services.inventory_ledger import InventoryLedger, recompute_stock_status


@pytest.mark.parametrize(
    "quantity,threshold,backorder,expected",
    [
        (0, 5, False, StockStatus.OUT_OF_STOCK),
        (0, 5, True, StockStatus.BACKORDER),
        (-3, 5, False, StockStatus.OUT_OF_STOCK),
        (5, 5, False, StockStatus.LOW_STOCK),
        (1, 5, True, StockStatus.LOW_STOCK),
        (6, 5, False, StockStatus.IN_STOCK),
    ],
)
def test_recompute_stock_status(quantity, threshold, backorder, expected):
    """Test stock status derivation."""
    assert recompute_stock_status(quantity, threshold, backorder) == expected


class TestReserve:
    """Tests for InventoryLedger.reserve."""

    async def test_reserve_decrements_and_refreshes_status(self, session_factory, make_product, read_stock):
        """Test reserving decrements quantity and refreshes status."""
        product = await make_product(quantity=8)

        async with session_factory() as session:
            reservation = await InventoryLedger(session).reserve(product, 4)
            await session.commit()

        assert reservation.reserved == 4
        assert reservation.quantity_after == 4
        assert not reservation.is_backordered
        assert await read_stock(product.id) == (4, StockStatus.LOW_STOCK.value)

    async def test_insufficient_stock_leaves_row_untouched(self, session_factory, make_product, read_stock):
        """Test insufficient stock leaves the row untouched."""
        product = await make_product(quantity=2)

        async with session_factory() as session:
            with pytest.raises(InsufficientStock) as exc_info:
                await InventoryLedger(session).reserve(product, 3)
            await session.rollback()

        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert await read_stock(product.id) == (2, StockStatus.LOW_STOCK.value)

    async def test_backorder_clamps_at_zero(self, session_factory, make_product, read_stock):
        """Test backorder reservations clamp quantity at zero."""
        product = await make_product(quantity=2, allow_backorder=True)

        async with session_factory() as session:
            reservation = await InventoryLedger(session).reserve(product, 5)
            await session.commit()

        assert reservation.reserved == 2
        assert reservation.is_backordered
        assert await read_stock(product.id) == (0, StockStatus.BACKORDER.value)

    async def test_untracked_product_reserves_nothing(self, session_factory, make_product, read_stock):
        """Test untracked products reserve nothing."""
        product = await make_product(quantity=1, track_quantity=False)

        async with session_factory() as session:
            reservation = await InventoryLedger(session).reserve(product, 50)
            await session.commit()

        assert reservation.reserved == 0
        assert await read_stock(product.id) == (1, StockStatus.LOW_STOCK.value)

    async def test_variant_stock_is_reserved_independently(self, session_factory, make_product, read_stock):
        """Test variant stock is reserved apart from the product."""
        product = await make_product(
            quantity=100,
            variants=[{"value": "M", "quantity": 3}, {"value": "XL", "quantity": 10}],
        )

        async with session_factory() as session:
            await InventoryLedger(session).reserve(product, 3, variant_value="M")
            await session.commit()

        assert await read_stock(product.id, "M") == (0, StockStatus.OUT_OF_STOCK.value)
        assert await read_stock(product.id, "XL") == (10, StockStatus.IN_STOCK.value)
        assert (await read_stock(product.id))[0] == 100

    async def test_lost_race_is_retried(self, session_factory, make_product, read_stock, monkeypatch):
        """Test a lost compare-and-swap is retried."""
        product = await make_product(quantity=5)
        original = InventoryRepository.compare_and_set
        calls = []

        async def flaky(self, *args, **kwargs):
            calls.append(kwargs["expected"])
            if len(calls) == 1:
                return False
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(InventoryRepository, "compare_and_set", flaky)

        async with session_factory() as session:
            reservation = await InventoryLedger(session).reserve(product, 1)
            await session.commit()

        assert len(calls) == 2
        assert reservation.reserved == 1
        assert (await read_stock(product.id))[0] == 4

    async def test_persistent_contention_gives_up(self, session_factory, make_product, read_stock, monkeypatch):
        """Test persistent contention raises after the retry limit."""
        product = await make_product(quantity=5)

        async def always_lose(self, *args, **kwargs):
            return False

        monkeypatch.setattr(InventoryRepository, "compare_and_set", always_lose)

        async with session_factory() as session:
            with pytest.raises(InventoryContention) as exc_info:
                await InventoryLedger(session, max_attempts=3).reserve(product, 1)

        assert exc_info.value.context["attempts"] == 3
        assert (await read_stock(product.id))[0] == 5


class TestRelease:
    """Tests for InventoryLedger.release."""

    async def test_release_restores_quantity_and_status(self, session_factory, make_product, read_stock):
        """Test release restores quantity and status."""
        product = await make_product(quantity=0)

        async with session_factory() as session:
            assert await InventoryLedger(session).release(product.id, 7) is True
            await session.commit()

        assert await read_stock(product.id) == (7, StockStatus.IN_STOCK.value)

    async def test_release_on_variant(self, session_factory, make_product, read_stock):
        """Test release on a variant row."""
        product = await make_product(variants=[{"value": "S", "quantity": 0}], allow_backorder=True)

        async with session_factory() as session:
            await InventoryLedger(session).release(product.id, 2, variant_value="S")
            await session.commit()

        assert await read_stock(product.id, "S") == (2, StockStatus.LOW_STOCK.value)

    async def test_release_of_missing_variant_is_skipped(self, session_factory, make_product):
        """Test release of a deleted variant is skipped."""
        product = await make_product()

        async with session_factory() as session:
            assert await InventoryLedger(session).release(product.id, 2, variant_value="gone") is False

    async def test_release_of_nothing_is_a_no_op(self, session_factory, make_product, read_stock):
        """Test releasing zero units is a no-op."""
        product = await make_product(quantity=3)

        async with session_factory() as session:
            assert await InventoryLedger(session).release(product.id, 0) is True

        assert (await read_stock(product.id))[0] == 3
