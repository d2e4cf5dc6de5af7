"""FastAPI dependencies shared by the Marketplace Service routers."""

from fastapi import Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.marketplace_service.models import User
from services.marketplace_service.services.referral_codes import get_user_by_auth_id
from sqlalchemy.ext.asyncio import AsyncSession


async def get_current_marketplace_user(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
) -> User:
    """Resolve the bearer-token caller to their marketplace User row (404 if absent)."""
    return await get_user_by_auth_id(db, current_user.user_id)
