"""Referral codes — generation, one-shot redemption, and the referrer summary."""

import secrets
import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.marketplace_service.errors import (
    AlreadyReferredError,
    InvalidReferralCodeError,
    MissingReferralCodeError,
    SelfReferralError,
    UserNotFoundError,
)
from services.marketplace_service.models import TransactionType, User, WalletTransaction
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class ReferralSummary:
    referral_code: str
    referred_by_id: Optional[uuid.UUID]
    referred_users: int
    total_earnings: int


async def get_user_by_auth_id(db: AsyncSession, auth_id: str) -> User:
    result = await db.execute(select(User).where(User.auth_id == auth_id))
    user = result.scalar_one_or_none()
    if not user:
        raise UserNotFoundError()
    return user


async def get_user_by_referral_code(db: AsyncSession, code: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.referral_code == code))
    return result.scalar_one_or_none()


async def generate_referral_code(db: AsyncSession) -> str:
    """Random URL-safe code not used by any existing user."""
    length = get_settings().REFERRAL_CODE_LENGTH
    while True:
        code = secrets.token_urlsafe(length)[:length]
        if not await get_user_by_referral_code(db, code):
            return code


async def create_user(
    db: AsyncSession,
    *,
    auth_id: str,
    email: str,
    name: Optional[str] = None,
) -> User:
    """Register a marketplace user with a fresh referral code."""
    user = User(
        auth_id=auth_id,
        email=email,
        name=name,
        referral_code=await generate_referral_code(db),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("Created user %s with referral code %s", user.id, user.referral_code)
    return user


async def redeem_referral_code(db: AsyncSession, user: User, code: Optional[str]) -> User:
    """Attach the owner of ``code`` as ``user``'s referrer. Allowed exactly once.

    Every rejection leaves the user row unchanged.
    """
    code = (code or "").strip()
    if not code:
        raise MissingReferralCodeError()

    if user.referred_by_id is not None:
        raise AlreadyReferredError()

    referrer = await get_user_by_referral_code(db, code)
    if referrer is None:
        raise InvalidReferralCodeError()

    if referrer.id == user.id:
        raise SelfReferralError()

    # Guarded update: a concurrent redemption that got there first matches no row
    result = await db.execute(
        update(User)
        .where(User.id == user.id, User.referred_by_id.is_(None))
        .values(referred_by_id=referrer.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise AlreadyReferredError()

    await db.commit()
    await db.refresh(user)

    logger.info("User %s redeemed referral code of user %s", user.id, referrer.id)
    return user


async def get_referral_summary(db: AsyncSession, user: User) -> ReferralSummary:
    referred_users = await db.scalar(
        select(func.count()).select_from(User).where(User.referred_by_id == user.id)
    )
    total_earnings = await db.scalar(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.user_id == user.id,
            WalletTransaction.transaction_type == TransactionType.REFERRAL_BONUS,
        )
    )
    return ReferralSummary(
        referral_code=user.referral_code,
        referred_by_id=user.referred_by_id,
        referred_users=int(referred_users or 0),
        total_earnings=int(total_earnings or 0),
    )
