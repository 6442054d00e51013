"""
Inventory repository - conditional quantity updates on products and variants.

Every write here is a single UPDATE statement. Reservations are guarded by
the quantity previously read (compare-and-swap); releases are plain
increments. `stock_status` is refreshed by the same statement.
"""
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import case, literal, select, update

from marketorders.models.product import Product, ProductVariant, StockStatus
from marketorders.repositories.base import BaseRepository


@dataclass(frozen=True)
class StockLevel:
    """Inventory row as read right before a conditional write."""

    quantity: int
    low_stock_threshold: int
    allow_backorder: bool
    track_quantity: bool


def stock_status_expression(new_quantity: Any, threshold: Any, allow_backorder: bool) -> Any:
    """SQL CASE mirroring the stock status rule, evaluated inside the UPDATE."""
    empty = StockStatus.BACKORDER if allow_backorder else StockStatus.OUT_OF_STOCK
    return case(
        (new_quantity <= 0, literal(empty.value)),
        (new_quantity <= threshold, literal(StockStatus.LOW_STOCK.value)),
        else_=literal(StockStatus.IN_STOCK.value),
    )


class InventoryRepository(BaseRepository[Product]):
    """Repository for product and variant stock levels."""

    model = Product

    async def read_level(
        self,
        product_id: UUID,
        variant_value: Optional[str] = None,
    ) -> Optional[StockLevel]:
        """Read the current stock level straight from the database."""
        if variant_value is None:
            stmt = select(
                Product.quantity,
                Product.low_stock_threshold,
                Product.allow_backorder,
                Product.track_quantity,
            ).where(Product.id == product_id)
        else:
            stmt = (
                select(
                    ProductVariant.quantity,
                    ProductVariant.low_stock_threshold,
                    Product.allow_backorder,
                    Product.track_quantity,
                )
                .join(Product, Product.id == ProductVariant.product_id)
                .where(
                    ProductVariant.product_id == product_id,
                    ProductVariant.value == variant_value,
                )
            )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        return StockLevel(
            quantity=row[0] or 0,
            low_stock_threshold=row[1],
            allow_backorder=bool(row[2]),
            track_quantity=bool(row[3]),
        )

    async def compare_and_set(
        self,
        product_id: UUID,
        variant_value: Optional[str],
        *,
        expected: int,
        new_quantity: int,
        stock_status: str,
    ) -> bool:
        """
        Write `new_quantity` only if the row still holds `expected`.
        Returns False when another writer got there first.
        """
        if variant_value is None:
            stmt = (
                update(Product)
                .where(Product.id == product_id, Product.quantity == expected)
                .values(quantity=new_quantity, stock_status=stock_status)
            )
        else:
            stmt = (
                update(ProductVariant)
                .where(
                    ProductVariant.product_id == product_id,
                    ProductVariant.value == variant_value,
                    ProductVariant.quantity == expected,
                )
                .values(quantity=new_quantity, stock_status=stock_status)
            )
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment(
        self,
        product_id: UUID,
        variant_value: Optional[str],
        amount: int,
        *,
        allow_backorder: bool,
    ) -> bool:
        """Atomically add `amount` units back. Returns False if the row is gone."""
        if variant_value is None:
            new_quantity = Product.quantity + amount
            stmt = (
                update(Product)
                .where(Product.id == product_id)
                .values(
                    quantity=new_quantity,
                    stock_status=stock_status_expression(
                        new_quantity, Product.low_stock_threshold, allow_backorder
                    ),
                )
            )
        else:
            new_quantity = ProductVariant.quantity + amount
            stmt = (
                update(ProductVariant)
                .where(
                    ProductVariant.product_id == product_id,
                    ProductVariant.value == variant_value,
                )
                .values(
                    quantity=new_quantity,
                    stock_status=stock_status_expression(
                        new_quantity, ProductVariant.low_stock_threshold, allow_backorder
                    ),
                )
            )
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
