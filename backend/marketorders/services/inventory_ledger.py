"""
Inventory Ledger - reservation and release of stock for orders.

Reservation is a compare-and-swap on the inventory row: read the current
quantity, then `UPDATE ... WHERE quantity = <value read>`. If another
writer moved the row in between, the update matches nothing and we read
again. Two orders racing for the last unit can therefore never both win.

The ledger works inside the caller's session; committing or rolling back
the reservations is the caller's decision.
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketorders.core.config import settings
from marketorders.core.exceptions import InsufficientStock, InventoryContention, ProductUnavailable
from marketorders.core.logging import get_logger
from marketorders.models.product import Product, StockStatus
from marketorders.repositories.inventory import InventoryRepository

logger = get_logger(__name__)


def recompute_stock_status(
    quantity: int,
    low_stock_threshold: int,
    allow_backorder: bool,
) -> StockStatus:
    """Derive the shopper-facing availability from a quantity."""
    if quantity <= 0:
        return StockStatus.BACKORDER if allow_backorder else StockStatus.OUT_OF_STOCK
    if quantity <= low_stock_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@dataclass(frozen=True)
class Reservation:
    """Units taken from one inventory row for one line item."""

    product_id: UUID
    variant_value: Optional[str]
    requested: int
    reserved: int
    quantity_after: Optional[int] = None

    @property
    def is_backordered(self) -> bool:
        return self.reserved < self.requested


class InventoryLedger:
    """Reserve and release stock on products and variants."""

    def __init__(self, session: AsyncSession, *, max_attempts: Optional[int] = None) -> None:
        self.repo = InventoryRepository(session)
        self.max_attempts = max_attempts or settings.inventory_cas_max_attempts

    async def reserve(
        self,
        product: Product,
        quantity: int,
        variant_value: Optional[str] = None,
    ) -> Reservation:
        """
        Take `quantity` units of a product (or one of its variants).

        Backorder products never go below zero: whatever is on hand is
        taken and the rest is backordered. Untracked products reserve
        nothing.

        Raises:
            InsufficientStock: not enough units and backorder is off
            InventoryContention: the row kept changing under us
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        for attempt in range(1, self.max_attempts + 1):
            level = await self.repo.read_level(product.id, variant_value)
            if level is None:
                raise ProductUnavailable(str(product.id), reason="no longer in the catalog")
            if not level.track_quantity:
                return Reservation(product.id, variant_value, requested=quantity, reserved=0)

            if level.quantity >= quantity:
                new_quantity = level.quantity - quantity
            elif level.allow_backorder:
                new_quantity = 0
            else:
                raise InsufficientStock(
                    str(product.id),
                    requested=quantity,
                    available=max(level.quantity, 0),
                    product_name=product.name,
                    variant=variant_value,
                )

            status = recompute_stock_status(
                new_quantity, level.low_stock_threshold, level.allow_backorder
            )
            swapped = await self.repo.compare_and_set(
                product.id,
                variant_value,
                expected=level.quantity,
                new_quantity=new_quantity,
                stock_status=status.value,
            )
            if swapped:
                reserved = max(level.quantity, 0) - new_quantity
                logger.debug(
                    "Inventory reserved",
                    product_id=str(product.id),
                    variant=variant_value,
                    requested=quantity,
                    reserved=reserved,
                    quantity_after=new_quantity,
                )
                return Reservation(
                    product.id,
                    variant_value,
                    requested=quantity,
                    reserved=reserved,
                    quantity_after=new_quantity,
                )

            logger.debug(
                "Inventory changed during reservation, retrying",
                product_id=str(product.id),
                variant=variant_value,
                attempt=attempt,
            )

        raise InventoryContention(str(product.id), self.max_attempts)

    async def release(
        self,
        product_id: UUID,
        quantity: int,
        variant_value: Optional[str] = None,
    ) -> bool:
        """
        Give `quantity` units back. Never fails on business grounds;
        returns False when the row no longer exists.
        """
        if quantity <= 0:
            return True

        level = await self.repo.read_level(product_id, variant_value)
        if level is None:
            logger.warning(
                "Inventory row vanished, release skipped",
                product_id=str(product_id),
                variant=variant_value,
                quantity=quantity,
            )
            return False

        released = await self.repo.increment(
            product_id,
            variant_value,
            quantity,
            allow_backorder=level.allow_backorder,
        )
        if released:
            logger.debug(
                "Inventory released",
                product_id=str(product_id),
                variant=variant_value,
                quantity=quantity,
            )
        return released
