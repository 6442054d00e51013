"""
Shared fixtures.

Every test gets its own file-backed SQLite database (aiosqlite, NullPool so
concurrent sessions really use separate connections), an engine wired to a
recording publisher and a clock the test can move forward.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Any, Optional  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from marketorders.core.database import create_session_factory, init_db  # noqa: E402
from marketorders.core.security import Actor, create_access_token  # noqa: E402
from marketorders.main import create_app  # noqa: E402
from marketorders.models import Product, ProductStatus, ProductVariant  # noqa: E402
from marketorders.schemas.order import OrderCreate  # noqa: E402
from marketorders.services.events import EventType, OrderEvent  # noqa: E402
from marketorders.services.inventory_ledger import recompute_stock_status  # noqa: E402
from marketorders.services.order_lifecycle import OrderLifecycleEngine  # noqa: E402

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingPublisher:
    """Collects published events in memory."""

    def __init__(self) -> None:
        self.events: list[OrderEvent] = []

    def publish(self, event: OrderEvent) -> None:
        self.events.append(event)

    def types(self) -> list[EventType]:
        return [event.type for event in self.events]

    def of_type(self, event_type: EventType) -> list[OrderEvent]:
        return [event for event in self.events if event.type == event_type]


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


# ============================================
# DATABASE / ENGINE
# ============================================

@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def order_engine(session_factory, publisher, clock) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(session_factory, publisher=publisher, clock=clock)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role="admin", email="admin@marketplace.dev")


# ============================================
# CATALOG HELPERS
# ============================================

@pytest.fixture
def make_product(session_factory):
    """Factory that inserts a product (and optional variants)."""

    async def _make(
        quantity: int = 10,
        *,
        name: str = "Kreyol T-Shirt",
        price: str = "100.00",
        allow_backorder: bool = False,
        track_quantity: bool = True,
        status: str = ProductStatus.ACTIVE.value,
        low_stock_threshold: int = 5,
        variants: Optional[list[dict[str, Any]]] = None,
    ) -> Product:
        product = Product(
            name=name,
            sku=f"SKU-{uuid4().hex[:8]}",
            status=status,
            price=Decimal(price),
            image_url="https://cdn.marketplace.dev/p.jpg",
            track_quantity=track_quantity,
            allow_backorder=allow_backorder,
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
            stock_status=recompute_stock_status(quantity, low_stock_threshold, allow_backorder).value,
            created_at=START,
            updated_at=START,
        )
        product.variants = [
            ProductVariant(
                name=v.get("name", "Size"),
                value=v["value"],
                price_adjustment=Decimal(v.get("price_adjustment", "0")),
                sku=v.get("sku"),
                quantity=v.get("quantity", 0),
                low_stock_threshold=v.get("low_stock_threshold", 5),
                stock_status=recompute_stock_status(
                    v.get("quantity", 0), v.get("low_stock_threshold", 5), allow_backorder
                ).value,
            )
            for v in variants or []
        ]
        async with session_factory() as session:
            session.add(product)
            await session.commit()
        return product

    return _make


@pytest.fixture
def read_stock(session_factory):
    """Read (quantity, stock_status) of a product or one of its variants."""

    async def _read(product_id: UUID, variant_value: Optional[str] = None) -> tuple[int, str]:
        async with session_factory() as session:
            if variant_value is None:
                stmt = select(Product.quantity, Product.stock_status).where(Product.id == product_id)
            else:
                stmt = select(ProductVariant.quantity, ProductVariant.stock_status).where(
                    ProductVariant.product_id == product_id,
                    ProductVariant.value == variant_value,
                )
            row = (await session.execute(stmt)).one()
            return row[0], row[1]

    return _read


def build_order(
    *lines: tuple[UUID, int] | tuple[UUID, int, str],
    method: str = "moncash",
    email: str = "Marie.Joseph@Example.com",
    **overrides: Any,
) -> OrderCreate:
    """Order request for the given (product_id, quantity[, variant]) lines."""
    items = []
    for line in lines:
        item = {"product_id": line[0], "quantity": line[1]}
        if len(line) > 2:
            item["variant_value"] = line[2]
        items.append(item)

    payment: dict[str, Any] = {"method": method, "confirmation_number": "MC-123456"}
    if method == "moncash":
        payment["payer_name"] = "Marie Joseph"

    data: dict[str, Any] = {
        "items": items,
        "customer": {
            "first_name": "Marie",
            "last_name": "Joseph",
            "email": email,
            "phone": "+509 3700 0000",
        },
        "shipping_address": {"street": "12 Rue Capois", "city": "Port-au-Prince"},
        "payment": payment,
    }
    data.update(overrides)
    return OrderCreate.model_validate(data)


@pytest.fixture
def order_request():
    return build_order


# ============================================
# HTTP
# ============================================

@pytest.fixture
def app(order_engine):
    return create_app(order_engine)


@pytest.fixture
async def async_client(app):
    """HTTP client bound to the app; the lifespan is not started."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    token = create_access_token({"sub": "admin-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers() -> dict[str, str]:
    token = create_access_token({"sub": "user-42", "role": "customer"})
    return {"Authorization": f"Bearer {token}"}
