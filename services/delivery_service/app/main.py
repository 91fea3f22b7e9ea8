"""FastAPI application for the Delivery Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from libs.common.errors import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.delivery_service.routers import admin_router, driver_router


def create_app() -> FastAPI:
    """Create and configure the Delivery Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Delivery Service",
        version="0.1.0",
        description="Batching, route claiming and address-gated delivery.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "delivery"}

    app.include_router(driver_router)
    app.include_router(admin_router)

    return app


app = create_app()
