"""FastAPI application for the Marketplace Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.marketplace_service.routers import (
    referrals_router,
    wallet_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Marketplace Service FastAPI app."""
    app = FastAPI(
        title="Home Services Marketplace Service",
        version="0.1.0",
        description="Orders, payment reconciliation, wallets and referrals.",
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "marketplace"}

    # Razorpay → /webhooks/razorpay (signature-verified, no auth)
    app.include_router(webhooks_router)

    # Customer-facing routes (bearer auth)
    app.include_router(referrals_router)
    app.include_router(wallet_router)

    return app


app = create_app()
