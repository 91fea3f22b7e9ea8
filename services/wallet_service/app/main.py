"""FastAPI application for the Wallet (credits) Service."""

from fastapi import FastAPI
from libs.common.errors import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.wallet_service.routers import admin_router, credits_router


def create_app() -> FastAPI:
    """Create and configure the Wallet Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Wallet Service",
        version="0.1.0",
        description="Append-only credits ledger.",
    )
    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "wallet"}

    app.include_router(credits_router)
    app.include_router(admin_router)

    return app


app = create_app()
