"""
Marketplace Orders API - Main Application Entry Point.

Order lifecycle and inventory reservation service for the marketplace.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketorders.core.config import settings
from marketorders.core.database import close_db, init_db
from marketorders.core.logging import configure_logging, get_logger
from marketorders.middleware import ErrorHandlerMiddleware, RequestIdMiddleware, register_exception_handlers
from marketorders.routers import admin_router, health_router, orders_router
from marketorders.services.expiration_sweeper import ExpirationSweeper
from marketorders.services.notification_service import NotificationDispatcher
from marketorders.services.order_lifecycle import OrderLifecycleEngine, build_order_engine

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    engine: OrderLifecycleEngine = app.state.order_engine

    # Startup
    logger.info(
        "Starting application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    if settings.auto_create_tables:
        await init_db()

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
        )
        logger.info("Sentry initialized")

    stop_sweeper = asyncio.Event()
    sweeper_task: Optional[asyncio.Task] = None
    if settings.run_sweeper_in_process:
        sweeper = ExpirationSweeper(engine)
        sweeper_task = asyncio.create_task(
            sweeper.run_forever(settings.sweeper_interval_minutes * 60, stop_sweeper)
        )

    yield

    # Shutdown
    logger.info("Shutting down application")
    stop_sweeper.set()
    if sweeper_task:
        await sweeper_task
    if isinstance(engine.publisher, NotificationDispatcher):
        await engine.publisher.drain()
    await close_db()


def create_app(order_engine: Optional[OrderLifecycleEngine] = None) -> FastAPI:
    """
    Application factory function.
    Creates and configures the FastAPI application.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Order lifecycle and inventory reservation API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.order_engine = order_engine or build_order_engine(publisher=NotificationDispatcher())

    # Add middleware (order matters - last added = outermost)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Request-ID",
        ],
    )

    register_exception_handlers(app)

    # Register routers
    app.include_router(health_router)
    app.include_router(orders_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    logger.info(
        "Application created",
        routes=len(app.routes),
        cors_origins=len(settings.allowed_origins),
    )

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketorders.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
