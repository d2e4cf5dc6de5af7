"""Referral code redemption and the caller's referral summary."""

from fastapi import APIRouter, Depends
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.marketplace_service.dependencies import get_current_marketplace_user
from services.marketplace_service.models import User
from services.marketplace_service.schemas import (
    RedeemReferralRequest,
    RedeemReferralResponse,
    ReferralStatistics,
    ReferralSummaryResponse,
)
from services.marketplace_service.services.referral_codes import (
    get_referral_summary,
    redeem_referral_code,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.post("/redeem", response_model=RedeemReferralResponse)
async def redeem_code(
    body: RedeemReferralRequest,
    user: User = Depends(get_current_marketplace_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Attach a referrer to the caller's account. Allowed once."""
    await redeem_referral_code(db, user, body.referral_code)
    return RedeemReferralResponse()


@router.get("/me", response_model=ReferralSummaryResponse)
async def my_referrals(
    user: User = Depends(get_current_marketplace_user),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await get_referral_summary(db, user)
    return ReferralSummaryResponse(
        referral_code=summary.referral_code,
        referred_by=summary.referred_by_id,
        statistics=ReferralStatistics(
            referred_users=summary.referred_users,
            total_earnings=summary.total_earnings,
        ),
    )
