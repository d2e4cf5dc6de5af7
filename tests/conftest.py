import os
from contextlib import contextmanager
from typing import AsyncGenerator

# Test settings must be in place before libs.common.config is first imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["RAZORPAY_WEBHOOK_SKIP_SIGNATURE"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["DB_RETRY_DELAY"] = "0"
os.environ["REFERRAL_BONUS_AMOUNT"] = "50"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.config import build_engine, build_session_factory
from libs.db.session import get_async_db
from services.marketplace_service import models as _marketplace_models  # noqa: F401
from services.marketplace_service.services.reconciler import compute_signature

get_settings.cache_clear()
settings = get_settings()


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory SQLite database per test, with SAVEPOINT support enabled.
    """
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = build_session_factory(test_engine)
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture
async def marketplace_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient bound to the marketplace app, sharing the test DB session.
    """
    from services.marketplace_service.app.main import app

    app.dependency_overrides[get_async_db] = lambda: db_session

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def make_auth_user(user) -> AuthUser:
    return AuthUser(sub=user.auth_id, email=user.email, role="customer")


@contextmanager
def override_auth(app, auth_user: AuthUser):
    """Temporarily authenticate every request as ``auth_user``."""
    app.dependency_overrides[get_current_user] = lambda: auth_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_current_user, None)


def sign(body: bytes) -> str:
    return compute_signature(body, settings.webhook_secret)


@pytest.fixture
def webhook_secret() -> str:
    return settings.webhook_secret
