"""
Product and variant models - the inventory side of the catalog.

Catalog CRUD lives in another service; this one reads prices and
availability and writes `quantity` / `stock_status` only.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketorders.core.database import Base, UTCDateTime, utcnow


class ProductStatus(str, Enum):
    """Catalog publication states."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class StockStatus(str, Enum):
    """Derived availability shown to shoppers."""

    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"
    BACKORDER = "backorder"


class Product(Base):
    """Sellable product with product-level inventory."""

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ProductStatus.DRAFT.value,
        index=True,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text)

    # Inventory
    track_quantity: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_backorder: Mapped[bool] = mapped_column(Boolean, default=False)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=5)
    stock_status: Mapped[str] = mapped_column(
        String(20),
        default=StockStatus.IN_STOCK.value,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value

    def find_variant(self, value: str) -> Optional["ProductVariant"]:
        for variant in self.variants:
            if variant.value == value:
                return variant
        return None

    def __repr__(self) -> str:
        return f"<Product {self.name[:30]}>"


class ProductVariant(Base):
    """A purchasable option of a product (size, colour...) with its own stock."""

    __tablename__ = "product_variants"
    __table_args__ = (
        UniqueConstraint("product_id", "value", name="uq_product_variants_product_value"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    product_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g. "Size"
    value: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g. "XL"
    price_adjustment: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    sku: Mapped[Optional[str]] = mapped_column(String(100))

    quantity: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=5)
    stock_status: Mapped[str] = mapped_column(String(20), default=StockStatus.IN_STOCK.value)

    product: Mapped[Product] = relationship("Product", back_populates="variants")

    def __repr__(self) -> str:
        return f"<ProductVariant {self.name}={self.value}>"
