"""
Test fixtures for StudioPass backend tests.

Provides:
- In-memory SQLite database, fresh for every test
- Async test client with proper session management
- Test data factories for users, desk operators, tariffs and subscriptions
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
os.environ.setdefault("DB_HOST", "localhost")
# Development mode for tests (disables ALLOWED_ORIGINS / YooKassa requirement)
os.environ.setdefault("ENVIRONMENT", "development")
# ASGI test client has no YooKassa source address
os.environ["YOOKASSA_WEBHOOK_IP_CHECK"] = "false"
os.environ["QR_CODE_TTL_SECONDS"] = "30"

import pytest
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from studiopass.app.core.base import Base
from studiopass.app.core.clock import utcnow
from studiopass.app.main import app
from studiopass.app.api.deps import get_session
from studiopass.app.models.user import User
from studiopass.app.models.operator import Operator
from studiopass.app.models.tariff import Tariff
from studiopass.app.models.subscription import Subscription
from studiopass.app.models import qr_code, usage, payment  # noqa: F401 - register tables


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """One in-memory database per test; StaticPool keeps it on a single connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.

    Every request gets its own session, separate from test_session used
    by the fixtures.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

@pytest.fixture
async def test_user(test_session: AsyncSession) -> User:
    user = User(id="user-1", email="client@example.com", name="Test Client")
    test_session.add(user)
    await test_session.commit()
    return user


@pytest.fixture
async def test_operator(test_session: AsyncSession) -> Operator:
    """Active front-desk operator."""
    operator = Operator(id="admin-1", name="Desk", is_active=True)
    test_session.add(operator)
    await test_session.commit()
    return operator


@pytest.fixture
async def test_tariff(test_session: AsyncSession) -> Tariff:
    tariff = Tariff(
        id="tariff-8",
        title="8 занятий",
        duration="1 месяц",
        session_count=8,
        price=Decimal("4000.00"),
        is_visible=True,
    )
    test_session.add(tariff)
    await test_session.commit()
    return tariff


async def make_subscription(
    session: AsyncSession,
    user_id: str,
    tariff_id: str,
    *,
    remaining: int = 5,
    total: Optional[int] = None,
    payment_id: Optional[str] = None,
    is_active: bool = True,
    days_left: int = 30,
) -> Subscription:
    """Insert a subscription directly, bypassing the ledger."""
    now = utcnow()
    sub = Subscription(
        user_id=user_id,
        tariff_id=tariff_id,
        payment_id=payment_id,
        start_date=now,
        end_date=now + timedelta(days=days_left),
        total_sessions=total if total is not None else max(remaining, 1),
        remaining_sessions=remaining,
        is_active=is_active,
        created_at=now,
    )
    session.add(sub)
    await session.commit()
    return sub


@pytest.fixture
async def test_subscription(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
) -> Subscription:
    """Active subscription with 5 of 8 sessions left, mirrored on the user."""
    sub = await make_subscription(test_session, test_user.id, test_tariff.id, remaining=5, total=8)
    test_user.active_subscription_id = sub.id
    test_user.remaining_sessions = 5
    test_user.total_sessions = 8
    test_user.is_subscription_active = True
    await test_session.commit()
    return sub
