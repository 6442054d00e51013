"""
Order repository for data access operations.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from marketorders.models.order import UNPAID_STATUSES, Order
from marketorders.repositories.base import BaseRepository

_UNPAID = [s.value for s in UNPAID_STATUSES]


class OrderRepository(BaseRepository[Order]):
    """Repository for Order model operations."""

    model = Order

    async def get_fresh(self, order_id: UUID) -> Optional[Order]:
        """Load an order bypassing the identity map, so the version is current."""
        return await self.session.get(Order, order_id, populate_existing=True)

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        """Get an order by its human-readable number."""
        stmt = select(Order).where(Order.order_number == order_number)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def number_exists(self, order_number: str) -> bool:
        stmt = select(func.count()).select_from(Order).where(Order.order_number == order_number)
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def count_expired(self, now: datetime) -> int:
        """Unpaid orders whose payment window has elapsed."""
        stmt = (
            select(func.count())
            .select_from(Order)
            .where(
                Order.status.in_(_UNPAID),
                Order.expires_at.is_not(None),
                Order.expires_at <= now,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_expired(
        self,
        now: datetime,
        *,
        limit: int,
        after: Optional[tuple[datetime, UUID]] = None,
    ) -> list[tuple[UUID, datetime]]:
        """
        (id, expires_at) of unpaid orders whose payment window has elapsed,
        oldest deadline first.

        `after` is the (expires_at, id) of the last row of the previous page;
        rows up to and including it are skipped.
        """
        stmt = select(Order.id, Order.expires_at).where(
            Order.status.in_(_UNPAID),
            Order.expires_at.is_not(None),
            Order.expires_at <= now,
        )
        if after is not None:
            last_expires_at, last_id = after
            stmt = stmt.where(
                or_(
                    Order.expires_at > last_expires_at,
                    and_(Order.expires_at == last_expires_at, Order.id > last_id),
                )
            )
        stmt = stmt.order_by(Order.expires_at.asc(), Order.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return [(row.id, row.expires_at) for row in result.all()]

    async def list_filtered(
        self,
        *,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        """
        Admin listing with filters, newest first.
        Returns (orders, total_count) tuple.
        """
        base_query = select(Order)

        if status:
            base_query = base_query.where(Order.status == status)
        if payment_status:
            base_query = base_query.where(Order.payment_status == payment_status)
        if search:
            pattern = f"%{search.strip().lower()}%"
            base_query = base_query.where(
                or_(
                    func.lower(Order.order_number).like(pattern),
                    Order.customer_email.like(pattern),
                    func.lower(Order.customer_first_name).like(pattern),
                    func.lower(Order.customer_last_name).like(pattern),
                )
            )

        count_stmt = select(func.count()).select_from(base_query.subquery())
        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            base_query
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def list_unpaid(self) -> list[Order]:
        """All orders still waiting for payment, closest deadline first."""
        stmt = (
            select(Order)
            .where(Order.status.in_(_UNPAID))
            .order_by(Order.expires_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(
        self,
        user_id: str,
        *,
        skip: int = 0,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        """A signed-in customer's orders, newest first."""
        count_stmt = select(func.count()).select_from(Order).where(Order.user_id == user_id)
        total = (await self.session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total
