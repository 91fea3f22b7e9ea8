"""Delivery service routers package."""

from services.delivery_service.routers.admin import router as admin_router
from services.delivery_service.routers.driver import router as driver_router

__all__ = ["admin_router", "driver_router"]
