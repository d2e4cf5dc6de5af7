"""Background tasks for the marketplace service."""

from libs.db.config import AsyncSessionLocal
from services.marketplace_service.services.referral_engine import (
    process_pending_awards,
)


async def retry_pending_referral_awards() -> int:
    """Drain due PendingReferralAward rows in a fresh session."""
    async with AsyncSessionLocal() as db:
        return await process_pending_awards(db)
