"""Referral bonus engine — credit a referrer once, on the referred user's first paid order.

``evaluate_and_award`` is the single entry point. It returns ``None`` for
every "no bonus due" outcome (no referrer, not the first completed order,
already awarded) and never raises for those.

Duplicate awards are prevented structurally: a REFERRAL_BONUS transaction
carries ``referred_user_id`` and the ledger table has
UNIQUE(user_id, referred_user_id). The pre-check below is the fast path; the
constraint catches concurrent webhook deliveries racing past it.

``award_referral_bonus_safely`` is the best-effort wrapper used after a
payment has cleared: failures roll back only the referral savepoint and are
queued as PendingReferralAward rows that ``process_pending_awards`` retries.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.marketplace_service.models import (
    AwardStatus,
    Order,
    OrderStatus,
    PendingReferralAward,
    TransactionType,
    User,
    Wallet,
    WalletTransaction,
)
from services.marketplace_service.services.ledger import post_entry
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class ReferralAward:
    wallet: Wallet
    transaction: WalletTransaction
    amount: int
    referrer_id: uuid.UUID
    referred_user_id: uuid.UUID
    order_id: uuid.UUID


def referral_bonus_description(user_id: uuid.UUID, order_id: uuid.UUID) -> str:
    return f"Referral bonus for user {user_id}'s first order #{order_id}"


async def _resolve_referral_chain(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[tuple[uuid.UUID, uuid.UUID]]:
    """Return ``(user_id, referrer_id)`` for the order, or None if there is no referrer."""
    result = await db.execute(
        select(Order.user_id, User.referred_by_id)
        .select_from(Order)
        .join(User, User.id == Order.user_id)
        .where(Order.id == order_id)
    )
    row = result.one_or_none()
    if row is None or row.referred_by_id is None:
        return None

    referrer_id = await db.scalar(select(User.id).where(User.id == row.referred_by_id))
    if referrer_id is None:
        return None
    return row.user_id, referrer_id


async def count_other_completed_orders(
    db: AsyncSession, user_id: uuid.UUID, exclude_order_id: uuid.UUID
) -> int:
    total = await db.scalar(
        select(func.count())
        .select_from(Order)
        .where(
            Order.user_id == user_id,
            Order.status == OrderStatus.COMPLETED,
            Order.id != exclude_order_id,
        )
    )
    return int(total or 0)


async def find_referral_bonus(
    db: AsyncSession, referrer_id: uuid.UUID, referred_user_id: uuid.UUID
) -> Optional[WalletTransaction]:
    result = await db.execute(
        select(WalletTransaction).where(
            WalletTransaction.user_id == referrer_id,
            WalletTransaction.referred_user_id == referred_user_id,
            WalletTransaction.transaction_type == TransactionType.REFERRAL_BONUS,
        )
    )
    return result.scalar_one_or_none()


async def evaluate_and_award(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    bonus_amount: Optional[int] = None,
) -> Optional[ReferralAward]:
    """Award the referral bonus for ``order_id`` if one is due.

    Runs inside the caller's transaction and does not commit.
    """
    amount = (
        bonus_amount
        if bonus_amount is not None
        else get_settings().REFERRAL_BONUS_AMOUNT
    )

    chain = await _resolve_referral_chain(db, order_id)
    if chain is None:
        logger.info("No valid referral chain found for order %s", order_id)
        return None
    user_id, referrer_id = chain

    previous = await count_other_completed_orders(db, user_id, order_id)
    if previous > 0:
        logger.info(
            "Not first order for user %s (%d completed before), skipping referral bonus",
            user_id,
            previous,
        )
        return None

    if await find_referral_bonus(db, referrer_id, user_id):
        logger.info(
            "Referral bonus already paid to referrer %s for user %s",
            referrer_id,
            user_id,
        )
        return None

    try:
        async with db.begin_nested():
            wallet, txn = await post_entry(
                db,
                user_id=referrer_id,
                amount=amount,
                transaction_type=TransactionType.REFERRAL_BONUS,
                description=referral_bonus_description(user_id, order_id),
                referred_user_id=user_id,
                source_order_id=order_id,
            )
    except IntegrityError:
        # Only a concurrent insert of the same (referrer, referred) pair is benign
        if await find_referral_bonus(db, referrer_id, user_id) is None:
            raise
        logger.info(
            "Referral bonus for user %s already recorded concurrently, skipping",
            user_id,
        )
        return None

    logger.info(
        "Referral bonus processed for first-time order %s: referrer=%s user=%s amount=%d",
        order_id,
        referrer_id,
        user_id,
        amount,
    )
    return ReferralAward(
        wallet=wallet,
        transaction=txn,
        amount=amount,
        referrer_id=referrer_id,
        referred_user_id=user_id,
        order_id=order_id,
    )


async def enqueue_pending_award(
    db: AsyncSession, order_id: uuid.UUID, error: str
) -> Optional[PendingReferralAward]:
    """Record a failed award for the background worker. Idempotent per order."""
    try:
        async with db.begin_nested():
            result = await db.execute(
                select(PendingReferralAward).where(
                    PendingReferralAward.order_id == order_id
                )
            )
            award = result.scalar_one_or_none()
            if award is None:
                award = PendingReferralAward(order_id=order_id, last_error=error)
                db.add(award)
            elif award.status == AwardStatus.PENDING:
                award.last_error = error
        return award
    except SQLAlchemyError:
        logger.exception("Could not queue referral award for order %s", order_id)
        return None


async def award_referral_bonus_safely(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[ReferralAward]:
    """Best-effort award after a committed payment. Never raises.

    A failure rolls back only the referral savepoint; the caller's order
    update stays intact and the award is queued for retry.
    """
    try:
        async with db.begin_nested():
            return await evaluate_and_award(db, order_id)
    except Exception as exc:
        logger.exception("Error processing referral bonus for order %s", order_id)
        await enqueue_pending_award(db, order_id, error=str(exc) or type(exc).__name__)
        return None


def _next_attempt_at(now: datetime, attempts: int) -> datetime:
    base = get_settings().REFERRAL_AWARD_RETRY_BASE_SECONDS
    return now + timedelta(seconds=base * 2 ** max(attempts - 1, 0))


async def process_pending_awards(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> int:
    """Retry queued referral awards that are due. Returns how many were attempted."""
    settings = get_settings()
    now = now or utc_now()

    result = await db.execute(
        select(PendingReferralAward)
        .where(
            PendingReferralAward.status == AwardStatus.PENDING,
            PendingReferralAward.next_attempt_at <= now,
        )
        .order_by(PendingReferralAward.next_attempt_at.asc())
        .limit(limit)
    )
    pending = list(result.scalars().all())

    processed = 0
    for award in pending:
        # Plain locals: a rolled-back savepoint may expire the row's attributes
        order_id = award.order_id
        attempts = award.attempts + 1
        try:
            async with db.begin_nested():
                outcome = await evaluate_and_award(db, order_id)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            award.attempts = attempts
            award.last_error = error
            if attempts >= settings.REFERRAL_AWARD_MAX_ATTEMPTS:
                award.status = AwardStatus.DEAD_LETTER
                logger.error(
                    "Referral award for order %s dead-lettered after %d attempts: %s",
                    order_id,
                    attempts,
                    error,
                )
            else:
                next_attempt_at = _next_attempt_at(now, attempts)
                award.next_attempt_at = next_attempt_at
                logger.warning(
                    "Referral award for order %s failed (attempt %d), next try at %s",
                    order_id,
                    attempts,
                    next_attempt_at.isoformat(),
                )
        else:
            award.attempts = attempts
            award.status = AwardStatus.COMPLETED
            award.last_error = None
            logger.info(
                "Pending referral award for order %s resolved (%s)",
                order_id,
                "awarded" if outcome else "no bonus due",
            )

        await db.commit()
        processed += 1

    if processed:
        logger.info("Processed %d pending referral awards", processed)
    return processed
