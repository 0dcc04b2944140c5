"""
Tests for the unit-of-work helpers.

These tests verify:
  - atomic(db) rolls back every write made inside it on error
  - run_in_unit_of_work commits on success
  - Serialization conflicts are retried with a fresh session
  - Other errors, and the last failed attempt, propagate without retry
  - A mutating endpoint hit by one conflict is re-run and applied once
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger.database import atomic, run_in_unit_of_work
from ledger.models.account import AccountType
from ledger.services import account_service, transaction_service


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


def _locked():
    return OperationalError("UPDATE financial_accounts", {}, Exception("database is locked"))


async def _account_names(session_factory, ctx):
    async with session_factory() as session:
        return [a.name for a in await account_service.list_accounts(session, ctx)]


class TestAtomic:
    """SAVEPOINT scope."""

    async def test_rolls_back_on_error(self, db_session, ctx):
        with pytest.raises(RuntimeError):
            async with atomic(db_session):
                await account_service.create_account(db_session, ctx, name="Doomed")
                raise RuntimeError("boom")

        assert await account_service.list_accounts(db_session, ctx) == []

    async def test_outer_work_survives(self, db_session, ctx):
        await account_service.create_account(db_session, ctx, name="Kept")
        with pytest.raises(RuntimeError):
            async with atomic(db_session):
                await account_service.create_account(
                    db_session, ctx, name="Doomed", account_type=AccountType.SAVINGS
                )
                raise RuntimeError("boom")

        accounts = await account_service.list_accounts(db_session, ctx)
        assert [a.name for a in accounts] == ["Kept"]


class TestRunInUnitOfWork:
    """Commit, retry and give up."""

    async def test_commits(self, session_factory, ctx):
        async def operation(session):
            account = await account_service.create_account(session, ctx, name="Operating")
            return account.id

        account_id = await run_in_unit_of_work(operation, session_factory=session_factory)
        assert account_id is not None
        assert await _account_names(session_factory, ctx) == ["Operating"]

    async def test_retries_serialization_conflict(self, session_factory, ctx):
        calls = []

        async def operation(session):
            calls.append(1)
            await account_service.create_account(session, ctx, name="Operating")
            if len(calls) == 1:
                raise _locked()
            return len(calls)

        assert await run_in_unit_of_work(operation, session_factory=session_factory, attempts=3) == 2
        assert await _account_names(session_factory, ctx) == ["Operating"]

    async def test_gives_up_after_last_attempt(self, session_factory, ctx):
        calls = []

        async def operation(session):
            calls.append(1)
            raise _locked()

        with pytest.raises(OperationalError):
            await run_in_unit_of_work(operation, session_factory=session_factory, attempts=2)
        assert len(calls) == 2

    async def test_other_errors_are_not_retried(self, session_factory, ctx):
        calls = []

        async def operation(session):
            calls.append(1)
            await account_service.create_account(session, ctx, name="Operating")
            raise OperationalError("INSERT", {}, Exception("no such table: x"))

        with pytest.raises(OperationalError):
            await run_in_unit_of_work(operation, session_factory=session_factory, attempts=3)
        assert len(calls) == 1
        assert await _account_names(session_factory, ctx) == []


class TestRequestRetry:
    """Mutating endpoints run through the retrying unit of work."""

    async def test_conflict_on_create_transaction_is_retried(self, user_client, monkeypatch):
        created = await user_client.post(
            "/financial/accounts",
            json={"name": "Operating", "type": "CHECKING", "initial_balance": "1000.00"},
        )
        account_id = created.json()["id"]

        real_create = transaction_service.create_transaction
        calls = []

        async def conflicting_create(db, ctx, **kwargs):
            calls.append(1)
            txn = await real_create(db, ctx, **kwargs)
            if len(calls) == 1:
                raise _locked()
            return txn

        monkeypatch.setattr(transaction_service, "create_transaction", conflicting_create)

        response = await user_client.post(
            "/financial/transactions",
            json={
                "description": "Sale",
                "amount": "250.00",
                "date": "2026-03-02",
                "type": "INCOME",
                "status": "COMPLETED",
                "to_account_id": account_id,
            },
        )
        assert response.status_code == 201
        assert response.json()["description"] == "Sale"
        assert len(calls) == 2

        listed = await user_client.get("/financial/transactions")
        assert listed.json()["total"] == 1

        account = await user_client.get(f"/financial/accounts/{account_id}")
        assert account.json()["balance"] == "1250.00"
