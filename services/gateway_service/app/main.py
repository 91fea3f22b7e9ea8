"""FastAPI application entrypoint for the marketplace gateway.

Mounts every service's routers in one process. Each service also ships its
own ``create_app`` for running it separately.
"""

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

load_dotenv()

from libs.common.config import get_settings
from libs.common.errors import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.delivery_service.routers import admin_router as delivery_admin_router
from services.delivery_service.routers import driver_router
from services.payments_service.routers import (
    payouts_admin_router,
    payouts_router,
    webhooks_router,
)
from services.store_service.routers import (
    admin_catalog_router,
    cart_router,
    catalog_router,
    orders_router,
)
from services.wallet_service.routers import admin_router as credits_admin_router
from services.wallet_service.routers import credits_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = get_settings()
    app = FastAPI(
        title="Marketplace Gateway",
        version="0.1.0",
        description="Checkout, delivery and settlement for the local food marketplace.",
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    # Add global exception handlers for consistent error responses
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple readiness endpoint."""
        return {"status": "ok"}

    # Store: catalog, cart, checkout, orders
    app.include_router(catalog_router)
    app.include_router(cart_router)
    app.include_router(orders_router)
    app.include_router(admin_catalog_router)

    # Credits
    app.include_router(credits_router)
    app.include_router(credits_admin_router)

    # Payments: webhooks and payouts
    app.include_router(webhooks_router)
    app.include_router(payouts_router)
    app.include_router(payouts_admin_router)

    # Delivery
    app.include_router(driver_router)
    app.include_router(delivery_admin_router)

    return app


app = create_app()
