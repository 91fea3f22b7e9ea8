"""Routers package."""

from services.payments_service.routers.payouts import admin_router as payouts_admin_router
from services.payments_service.routers.payouts import recipient_router as payouts_router
from services.payments_service.routers.webhooks import router as webhooks_router

__all__ = [
    "payouts_admin_router",
    "payouts_router",
    "webhooks_router",
]
