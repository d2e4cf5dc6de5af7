"""Marketplace service routers."""

from services.marketplace_service.routers.referrals import router as referrals_router
from services.marketplace_service.routers.wallet import router as wallet_router
from services.marketplace_service.routers.webhooks import router as webhooks_router

__all__ = [
    "referrals_router",
    "wallet_router",
    "webhooks_router",
]
