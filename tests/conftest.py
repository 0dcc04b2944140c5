"""
Test fixtures for the Ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - ctx / other_ctx / admin_ctx: RequestContexts for service-level tests
  - client: Async HTTP test client (no Authorization header)
  - user_client / admin_client: Test clients carrying a USER / ADMIN token
  - make_headers: builds a bearer header for any company, user and role

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) with SAVEPOINT support switched
    on, so atomic(db) rollbacks behave the way they do in production.
  - Service tests call the services directly with db_session; API tests
    go through the HTTP layer only. The two are never mixed in one test.
  - Tokens are minted with create_access_token, standing in for the
    external identity service.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from ledger.context import RequestContext, Role
from ledger.database import Base, configure_sqlite_transactions, get_db, get_session_factory
from ledger.main import app
from ledger.models.account import AccountType
from ledger.security import create_access_token
from ledger.services import account_service, credit_card_service


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

COMPANY_ID = 1
OTHER_COMPANY_ID = 2


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    configure_sqlite_transactions(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


@pytest.fixture
def ctx():
    return RequestContext(company_id=COMPANY_ID, user_id=10, role=Role.USER)


@pytest.fixture
def admin_ctx():
    return RequestContext(company_id=COMPANY_ID, user_id=11, role=Role.ADMIN)


@pytest.fixture
def other_ctx():
    return RequestContext(company_id=OTHER_COMPANY_ID, user_id=20, role=Role.USER)


# ---------------------------------------------------------------------------
# Service-level builders
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def checking(db_session, ctx):
    """A CHECKING account with 1000.00 that may not go negative."""
    return await account_service.create_account(
        db_session, ctx, name="Main checking", account_type=AccountType.CHECKING, initial_balance="1000.00"
    )


@pytest_asyncio.fixture
async def card(db_session, ctx):
    """
    A credit card account with a 5000.00 limit, closing on the 10th and
    due on the 20th, 10% minimum payment.
    """
    account = await account_service.create_account(
        db_session, ctx, name="Company card", account_type=AccountType.CREDIT_CARD
    )
    await credit_card_service.create_config(
        db_session,
        ctx,
        account.id,
        credit_limit="5000.00",
        closing_day=10,
        due_day=20,
        minimum_payment_percent="10.00",
    )
    return account


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------

def auth_header(company_id: int, user_id: int, role: Role) -> dict:
    token = create_access_token(
        {"sub": str(user_id), "company_id": company_id, "role": role.value}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_headers():
    return auth_header


@pytest_asyncio.fixture
async def client(db_engine):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db and get_session_factory dependencies so all
    requests hit the in-memory test database instead of the real one.
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: async_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def user_client(client):
    """Test client acting as a USER of company 1."""
    client.headers.update(auth_header(COMPANY_ID, 10, Role.USER))
    return client


@pytest_asyncio.fixture
async def admin_client(client):
    """Test client acting as an ADMIN of company 1."""
    client.headers.update(auth_header(COMPANY_ID, 11, Role.ADMIN))
    return client
