"""
Health check endpoints for the load balancer and the on-call dashboard.
"""
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from marketorders.core.config import settings
from marketorders.core.logging import get_logger
from marketorders.repositories.order import OrderRepository
from marketorders.routers.deps import OrderEngine

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@router.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "version": settings.app_version, "timestamp": _timestamp()}


@router.get("/health/live")
async def liveness_check() -> dict:
    """Process is up; dependencies are not checked."""
    return {"status": "alive", "timestamp": _timestamp()}


@router.get("/health/ready")
async def readiness_check(engine: OrderEngine) -> dict:
    """
    Readiness check.

    Fails when the order database is unreachable. Also reports how many
    unpaid orders are past their deadline and still waiting for the
    sweeper; a growing number means the sweeper is not running.
    """
    checks: dict = {}
    try:
        async with engine.session_factory() as session:
            backlog = await OrderRepository(session).count_expired(engine.now())
        checks["database"] = "connected"
        checks["expired_backlog"] = backlog
    except SQLAlchemyError as e:
        logger.warning("Readiness check failed", error=str(e))
        checks["database"] = f"error: {e}"

    return {
        "status": "ready" if checks["database"] == "connected" else "not_ready",
        "checks": checks,
        "timestamp": _timestamp(),
    }
