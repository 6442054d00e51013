"""
API routers package.
"""
from marketorders.routers.admin import router as admin_router
from marketorders.routers.health import router as health_router
from marketorders.routers.orders import router as orders_router

__all__ = [
    "health_router",
    "orders_router",
    "admin_router",
]
