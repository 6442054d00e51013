"""
Expiration Sweeper - cancels unpaid orders whose payment window elapsed.

Each expired order is cancelled through the engine's `cancel_order`, in its
own transaction, so inventory is restored by the same code path as a manual
cancellation. Running the sweeper twice, or concurrently with an admin,
cancels each order at most once.
"""
import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from marketorders.core.exceptions import Conflict, NotFound, OrderServiceError
from marketorders.core.logging import get_logger
from marketorders.core.security import SYSTEM_ACTOR
from marketorders.repositories.order import OrderRepository
from marketorders.services.order_lifecycle import OrderLifecycleEngine

logger = get_logger(__name__)

EXPIRED_REASON = "Expired: payment window elapsed"


@dataclass
class SweepResult:
    examined: int = 0
    cancelled: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ExpirationSweeper:
    """Batch cancellation of expired unpaid orders."""

    def __init__(self, engine: OrderLifecycleEngine, batch_size: Optional[int] = None) -> None:
        self.engine = engine
        self.batch_size = batch_size or engine.config.sweeper_batch_size

    async def sweep(self) -> SweepResult:
        """
        Cancel every order that is unpaid and past its deadline right now.

        Per-order failures are logged and counted; the batch carries on.
        """
        now = self.engine.now()
        result = SweepResult()
        cursor: Optional[tuple[datetime, UUID]] = None

        while True:
            async with self.engine.session_factory() as session:
                candidates = await OrderRepository(session).list_expired(
                    now, limit=self.batch_size, after=cursor
                )
            if not candidates:
                break

            for order_id, expires_at in candidates:
                cursor = (expires_at, order_id)
                result.examined += 1
                try:
                    await self.engine.cancel_order(
                        order_id,
                        EXPIRED_REASON,
                        SYSTEM_ACTOR,
                        expired_as_of=now,
                    )
                    result.cancelled += 1
                except (Conflict, NotFound) as exc:
                    # Cancelled, paid or extended since it was selected
                    result.skipped += 1
                    logger.info("Expired order skipped", order_id=str(order_id), reason=exc.code)
                except OrderServiceError as exc:
                    result.failed += 1
                    logger.error(
                        "Expired order could not be cancelled",
                        order_id=str(order_id),
                        error=exc.detail,
                    )
                except Exception:
                    result.failed += 1
                    logger.exception("Expired order cancellation crashed", order_id=str(order_id))

            if len(candidates) < self.batch_size:
                break

        if result.examined:
            logger.info("Expiration sweep finished", **result.to_dict())
        return result

    async def run_forever(
        self,
        interval_seconds: float,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """In-process scheduling loop, for deployments without the ARQ worker."""
        stop = stop or asyncio.Event()
        logger.info("Expiration sweeper started", interval_seconds=interval_seconds)

        while not stop.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("Expiration sweep crashed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue

        logger.info("Expiration sweeper stopped")
