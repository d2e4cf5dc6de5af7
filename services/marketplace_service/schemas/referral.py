"""Referral request/response schemas."""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RedeemReferralRequest(BaseModel):
    # Optional so an absent code is rejected with the domain error, not a 422
    referral_code: Optional[str] = Field(default=None, alias="referralCode")

    model_config = ConfigDict(populate_by_name=True)


class RedeemReferralResponse(BaseModel):
    success: bool = True
    message: str = "Referral code applied successfully"


class ReferralStatistics(BaseModel):
    referred_users: int
    total_earnings: int


class ReferralSummaryResponse(BaseModel):
    referral_code: str
    referred_by: Optional[uuid.UUID] = None
    statistics: ReferralStatistics
