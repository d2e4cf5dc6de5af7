"""Wallet balance and ledger history for the caller."""

from fastapi import APIRouter, Depends, Query
from libs.db.session import get_async_db
from services.marketplace_service.dependencies import get_current_marketplace_user
from services.marketplace_service.errors import WalletNotFoundError
from services.marketplace_service.models import User
from services.marketplace_service.schemas import (
    TransactionListResponse,
    TransactionResponse,
    WalletResponse,
)
from services.marketplace_service.services.ledger import get_wallet, list_transactions
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/me", response_model=WalletResponse)
async def get_my_wallet(
    user: User = Depends(get_current_marketplace_user),
    db: AsyncSession = Depends(get_async_db),
):
    wallet = await get_wallet(db, user.id)
    if not wallet:
        raise WalletNotFoundError()
    return wallet


@router.get("/transactions", response_model=TransactionListResponse)
async def get_my_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_marketplace_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Ledger entries for the caller, newest first."""
    transactions, total = await list_transactions(db, user.id, skip=skip, limit=limit)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        skip=skip,
        limit=limit,
    )
