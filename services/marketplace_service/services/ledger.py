"""Ledger primitives — wallet balance changes with an immutable audit trail.

Every balance change goes through ``post_entry`` which, in the caller's
transaction:

1. Fetches the owner's wallet, creating it on first use
2. Applies the signed amount as a relative SQL update (``balance + delta``),
   refusing any change that would take the balance below zero
3. Appends a WalletTransaction carrying the resulting balance

Nothing here commits. The caller owns the transaction boundary, so balance
and ledger row are always committed (or rolled back) together.
"""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.marketplace_service.errors import InsufficientBalanceError
from services.marketplace_service.models import (
    TransactionType,
    Wallet,
    WalletTransaction,
)
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def get_wallet(db: AsyncSession, user_id: uuid.UUID) -> Optional[Wallet]:
    result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_wallet(db: AsyncSession, user_id: uuid.UUID) -> Wallet:
    """Return the user's wallet, creating an empty one if none exists.

    The insert runs in a savepoint so a concurrent creator winning the
    unique(user_id) race only costs a re-read.
    """
    wallet = await get_wallet(db, user_id)
    if wallet:
        return wallet

    try:
        async with db.begin_nested():
            wallet = Wallet(user_id=user_id, balance=0)
            db.add(wallet)
    except IntegrityError:
        logger.info("Wallet for user %s created concurrently, re-reading", user_id)
        result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one()

    logger.info("Created wallet %s for user %s", wallet.id, user_id)
    return wallet


async def post_entry(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: int,
    transaction_type: TransactionType,
    description: str,
    referred_user_id: Optional[uuid.UUID] = None,
    source_order_id: Optional[uuid.UUID] = None,
) -> tuple[Wallet, WalletTransaction]:
    """Apply one ledger entry to the user's wallet. Returns ``(wallet, txn)``.

    ``amount`` is always positive; the direction comes from the transaction
    type (DEBIT subtracts, everything else adds).
    """
    if amount <= 0:
        raise ValueError(f"Ledger amount must be positive, got {amount}")

    wallet = await get_or_create_wallet(db, user_id)
    balance_before = wallet.balance
    delta = transaction_type.sign * amount

    result = await db.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id, Wallet.balance + delta >= 0)
        .values(balance=Wallet.balance + delta, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientBalanceError(
            f"Insufficient wallet balance: need {amount}, have {wallet.balance}"
        )

    await db.refresh(wallet, attribute_names=["balance", "updated_at"])

    txn = WalletTransaction(
        wallet_id=wallet.id,
        user_id=user_id,
        amount=amount,
        transaction_type=transaction_type,
        balance_after=wallet.balance,
        description=description,
        referred_user_id=referred_user_id,
        source_order_id=source_order_id,
    )
    db.add(txn)
    await db.flush()

    logger.info(
        "%s %d on wallet %s, balance %d→%d",
        transaction_type.value,
        amount,
        wallet.id,
        balance_before,
        wallet.balance,
    )
    return wallet, txn


async def list_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[WalletTransaction], int]:
    """Newest first. Returns ``(page, total)``."""
    total = await db.scalar(
        select(func.count())
        .select_from(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
    )
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id)
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def ledger_total(db: AsyncSession, wallet_id: uuid.UUID) -> int:
    """Signed sum of a wallet's entries; always equals the wallet balance."""
    result = await db.execute(
        select(WalletTransaction.transaction_type, func.sum(WalletTransaction.amount))
        .where(WalletTransaction.wallet_id == wallet_id)
        .group_by(WalletTransaction.transaction_type)
    )
    return sum(
        TransactionType(txn_type).sign * int(total or 0)
        for txn_type, total in result.all()
    )
