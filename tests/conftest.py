"""Root conftest - test infrastructure for all backend tests.

Provides:
- In-memory SQLite engine (aiosqlite) with working SAVEPOINTs
- db_session fixture with tables created from SQLModel.metadata
- Test user / organization fixtures
- Stripe double and BillingService wired around it
- API client with dependency overrides
- Autouse mock for external services (Postmark)
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401  registers every table on SQLModel.metadata
from app.config.plans import AddOnType, PlanCatalog
from app.models.subscription import SubscriptionPlan
from app.models.user import User, UserRole

from tests.helpers.mock_factories import make_stripe_service

# ─────────────────────────────────────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────────────────────────────────────


def _enable_savepoints(engine) -> None:
    """pysqlite/aiosqlite manage transactions themselves and break SAVEPOINT.

    Hand transaction control back to SQLAlchemy so begin_nested() works.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
async def db_engine():
    """A fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    _enable_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Session on the per-test database. Code under test may commit freely."""
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        yield session


async def _add_user(db: AsyncSession, **fields) -> User:
    user = User(
        id=uuid.uuid4(),
        email=fields.pop("email", f"__test_{uuid.uuid4().hex[:8]}@example.com"),
        **fields,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


@pytest.fixture
async def test_user(db_session: AsyncSession):
    """A property manager with no organization."""
    return await _add_user(
        db_session,
        first_name="Test",
        role=UserRole.PROPERTY_MANAGER.value,
    )


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def org_manager(db_session: AsyncSession, org_id):
    """Property manager who belongs to org_id."""
    return await _add_user(
        db_session,
        first_name="Manager",
        role=UserRole.PROPERTY_MANAGER.value,
        org_id=org_id,
    )


@pytest.fixture
async def org_technician(db_session: AsyncSession, org_id):
    """Second member of org_id without billing rights."""
    return await _add_user(
        db_session,
        first_name="Tech",
        role=UserRole.TECHNICIAN.value,
        org_id=org_id,
    )


@pytest.fixture
async def add_user(db_session: AsyncSession):
    """Factory for extra users inside the test database."""

    async def _factory(**fields) -> User:
        return await _add_user(db_session, **fields)

    return _factory


# ─────────────────────────────────────────────────────────────────────────────
# Billing
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog(
        price_ids={
            SubscriptionPlan.BASIC: "price_basic",
            SubscriptionPlan.PROFESSIONAL: "price_pro",
            SubscriptionPlan.ENTERPRISE: "price_ent",
        },
        addon_price_ids={
            AddOnType.EXTRA_PROPERTIES: "price_addon_props",
            AddOnType.EXTRA_TEAM_MEMBERS: "price_addon_team",
        },
    )


@pytest.fixture
def stripe_service() -> MagicMock:
    """Configured Stripe double. Every call must be stubbed by the test."""
    return make_stripe_service()


@pytest.fixture
def notifier() -> MagicMock:
    mock = MagicMock()
    mock.notify_payment_failed = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def billing(stripe_service, catalog, notifier):
    from app.services.billing import BillingService

    return BillingService(stripe_service, catalog, notifier=notifier)


# ─────────────────────────────────────────────────────────────────────────────
# API Client
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def api_client(db_session: AsyncSession, test_user, billing):
    """HTTP client that bypasses token auth and uses the test DB session.

    Overrides: get_current_user, get_db, get_billing_service
    """
    from app.api.deps.auth import get_current_user
    from app.api.deps.billing import get_billing_service
    from app.core.database import get_db
    from app.main import app

    app.dependency_overrides[get_current_user] = lambda: test_user
    app.dependency_overrides[get_billing_service] = lambda: billing

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_external_services():
    """SAFETY: never send real email from tests."""
    with patch("app.services.email.payment_failed.postmark_service", new_callable=MagicMock) as mock_pm:
        mock_pm.send = AsyncMock(return_value=True)
        yield {"postmark": mock_pm}
