"""
ARQ Job Queue Service - Redis-backed worker for periodic order maintenance.

Provides:
- Expiration sweep every `sweeper_interval_minutes`

Run with: arq marketorders.services.job_queue.WorkerSettings
"""
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from marketorders.core.config import settings
from marketorders.core.database import close_db
from marketorders.core.logging import configure_logging, get_logger
from marketorders.services.expiration_sweeper import ExpirationSweeper
from marketorders.services.notification_service import NotificationDispatcher
from marketorders.services.order_lifecycle import build_order_engine

logger = get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from config."""
    redis_url = str(settings.redis_url) if settings.redis_url else "redis://localhost:6379"
    return RedisSettings.from_dsn(redis_url)


def sweep_minutes(interval: int) -> set[int]:
    """Minutes of the hour at which the sweep cron fires."""
    return set(range(0, 60, interval))


# ============================================
# LIFECYCLE HOOKS
# ============================================

async def startup(ctx: dict) -> None:
    configure_logging()
    dispatcher = NotificationDispatcher()
    ctx["dispatcher"] = dispatcher
    ctx["engine"] = build_order_engine(publisher=dispatcher)
    logger.info("Order worker started")


async def shutdown(ctx: dict) -> None:
    dispatcher: NotificationDispatcher | None = ctx.get("dispatcher")
    if dispatcher:
        await dispatcher.drain()
    await close_db()
    logger.info("Order worker stopped")


# ============================================
# JOB FUNCTIONS
# ============================================

async def sweep_expired_orders_job(ctx: dict) -> dict[str, Any]:
    """
    Cancel unpaid orders past their payment deadline.

    Returns:
        Sweep counters (examined, cancelled, skipped, failed)
    """
    engine = ctx.get("engine") or build_order_engine()
    result = await ExpirationSweeper(engine).sweep()
    return result.to_dict()


# ============================================
# WORKER SETTINGS
# ============================================

class WorkerSettings:
    """ARQ worker configuration."""

    functions = [sweep_expired_orders_job]

    cron_jobs = [
        cron(
            sweep_expired_orders_job,
            minute=sweep_minutes(settings.sweeper_interval_minutes),
            run_at_startup=True,
            unique=True,
        ),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = get_redis_settings()

    max_jobs = 10
    job_timeout = 300
    keep_result = 3600

