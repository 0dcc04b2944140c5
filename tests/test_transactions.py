"""
Tests for the transaction engine.

These tests verify:
  - The end-to-end balance scenario (expense, income, transfer, cancel)
  - Account/type consistency for INCOME, EXPENSE and TRANSFER
  - The status machine (PENDING -> COMPLETED -> CANCELED, nothing back)
  - Cancel is the exact inverse of complete
  - Editing a COMPLETED transaction reverses and re-applies its effect
  - A null description in an edit keeps the current one
  - Negative-balance enforcement and inactive accounts
  - Deletion reverses the effect first
  - A failure halfway through leaves no partial state behind
  - Listing, pagination and the period summary
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from ledger.exceptions import (
    AccountInactive,
    InconsistentAccountsForType,
    InvalidAmount,
    InvalidDateRange,
    InvalidStatusTransition,
    NegativeBalanceNotAllowed,
)
from ledger.models.account import AccountType
from ledger.models.transaction import TransactionStatus, TransactionType
from ledger.services import account_service, transaction_service

COMPLETED = TransactionStatus.COMPLETED


async def _completed(db, ctx, txn_type, amount, **accounts):
    return await transaction_service.create_transaction(
        db, ctx, f"{txn_type.value.lower()} {amount}", amount, date(2026, 4, 1),
        txn_type, status=COMPLETED, **accounts,
    )


class TestBalanceScenario:
    """The reference walk-through of balances across a sequence of postings."""

    async def test_full_scenario(self, db_session, ctx):
        checking = await account_service.create_account(
            db_session, ctx, name="Checking", account_type=AccountType.CHECKING, allow_negative_balance=True
        )
        savings = await account_service.create_account(
            db_session, ctx, name="Savings", account_type=AccountType.SAVINGS, initial_balance="1000.00"
        )

        await _completed(db_session, ctx, TransactionType.EXPENSE, "150.75", from_account_id=checking.id)
        assert checking.balance == Decimal("-150.75")

        await _completed(db_session, ctx, TransactionType.INCOME, "3000.00", to_account_id=checking.id)
        assert checking.balance == Decimal("2849.25")

        await _completed(
            db_session, ctx, TransactionType.TRANSFER, "500.00",
            from_account_id=checking.id, to_account_id=savings.id,
        )
        assert checking.balance == Decimal("2349.25")
        assert savings.balance == Decimal("1500.00")

        expense = await _completed(db_session, ctx, TransactionType.EXPENSE, "200.00", from_account_id=checking.id)
        assert checking.balance == Decimal("2149.25")

        await transaction_service.update_status(db_session, ctx, expense.id, TransactionStatus.CANCELED)
        assert checking.balance == Decimal("2349.25")

        for account in (checking, savings):
            result = await account_service.get_balance(db_session, ctx, account.id)
            assert result["match"] is True


class TestAccountConsistency:
    """Each type takes exactly the accounts it needs."""

    @pytest.mark.parametrize(
        "txn_type, from_id, to_id",
        [
            (TransactionType.INCOME, None, None),
            (TransactionType.INCOME, 1, 1),
            (TransactionType.EXPENSE, None, 1),
            (TransactionType.EXPENSE, 1, 1),
            (TransactionType.TRANSFER, 1, None),
            (TransactionType.TRANSFER, 1, 1),
        ],
    )
    async def test_inconsistent_accounts(self, db_session, ctx, checking, txn_type, from_id, to_id):
        with pytest.raises(InconsistentAccountsForType):
            await transaction_service.create_transaction(
                db_session, ctx, "x", "10.00", date(2026, 4, 1), txn_type,
                from_account_id=from_id and checking.id, to_account_id=to_id and checking.id,
            )

    @pytest.mark.parametrize("amount", ["0", "-5.00", "abc"])
    async def test_amount_must_be_positive(self, db_session, ctx, checking, amount):
        with pytest.raises(InvalidAmount):
            await transaction_service.create_transaction(
                db_session, ctx, "x", amount, date(2026, 4, 1), TransactionType.INCOME,
                to_account_id=checking.id,
            )


class TestStatusMachine:
    """PENDING -> COMPLETED -> CANCELED, and CANCELED is terminal."""

    async def test_pending_has_no_effect_until_completed(self, db_session, ctx, checking):
        txn = await transaction_service.create_transaction(
            db_session, ctx, "Invoice 42", "250.00", date(2026, 4, 1), TransactionType.INCOME,
            to_account_id=checking.id,
        )
        assert txn.status == TransactionStatus.PENDING
        assert checking.balance == Decimal("1000.00")

        await transaction_service.update_status(db_session, ctx, txn.id, COMPLETED)
        assert checking.balance == Decimal("1250.00")

    async def test_pending_to_canceled_has_no_effect(self, db_session, ctx, checking):
        txn = await transaction_service.create_transaction(
            db_session, ctx, "Maybe", "250.00", date(2026, 4, 1), TransactionType.EXPENSE,
            from_account_id=checking.id,
        )
        await transaction_service.update_status(db_session, ctx, txn.id, TransactionStatus.CANCELED)
        assert checking.balance == Decimal("1000.00")

    async def test_completed_cannot_go_back_to_pending(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.INCOME, "10.00", to_account_id=checking.id)
        with pytest.raises(InvalidStatusTransition):
            await transaction_service.update_status(db_session, ctx, txn.id, TransactionStatus.PENDING)

    async def test_canceled_is_terminal(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.INCOME, "10.00", to_account_id=checking.id)
        await transaction_service.update_status(db_session, ctx, txn.id, TransactionStatus.CANCELED)

        with pytest.raises(InvalidStatusTransition):
            await transaction_service.update_status(db_session, ctx, txn.id, COMPLETED)
        with pytest.raises(InvalidStatusTransition):
            await transaction_service.update_transaction(db_session, ctx, txn.id, description="edited")

    async def test_cancel_transfer_restores_both_sides(self, db_session, ctx, checking):
        savings = await account_service.create_account(
            db_session, ctx, name="Savings", account_type=AccountType.SAVINGS
        )
        txn = await _completed(
            db_session, ctx, TransactionType.TRANSFER, "333.33",
            from_account_id=checking.id, to_account_id=savings.id,
        )
        await transaction_service.update_status(db_session, ctx, txn.id, TransactionStatus.CANCELED)
        assert checking.balance == Decimal("1000.00")
        assert savings.balance == Decimal("0.00")


class TestEditing:
    """Editing reposts only when money moves differently."""

    async def test_amount_change_reposts(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.EXPENSE, "100.00", from_account_id=checking.id)
        await transaction_service.update_transaction(db_session, ctx, txn.id, amount="40.10")
        assert checking.balance == Decimal("959.90")

    async def test_account_change_moves_the_effect(self, db_session, ctx, checking):
        savings = await account_service.create_account(
            db_session, ctx, name="Savings", account_type=AccountType.SAVINGS
        )
        txn = await _completed(db_session, ctx, TransactionType.INCOME, "75.00", to_account_id=checking.id)
        await transaction_service.update_transaction(db_session, ctx, txn.id, to_account_id=savings.id)
        assert checking.balance == Decimal("1000.00")
        assert savings.balance == Decimal("75.00")

    async def test_type_change_with_accounts(self, db_session, ctx, checking):
        savings = await account_service.create_account(
            db_session, ctx, name="Savings", account_type=AccountType.SAVINGS
        )
        txn = await _completed(db_session, ctx, TransactionType.EXPENSE, "50.00", from_account_id=checking.id)
        await transaction_service.update_transaction(
            db_session, ctx, txn.id, type=TransactionType.TRANSFER, to_account_id=savings.id
        )
        assert checking.balance == Decimal("950.00")
        assert savings.balance == Decimal("50.00")

    async def test_metadata_edit_keeps_balances(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.EXPENSE, "100.00", from_account_id=checking.id)
        updated = await transaction_service.update_transaction(
            db_session, ctx, txn.id, description="Office chairs", notes="Q2", tags=["office", "furniture"]
        )
        assert updated.description == "Office chairs"
        assert updated.tag_names == ["furniture", "office"]
        assert checking.balance == Decimal("900.00")

    async def test_null_description_keeps_current(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.EXPENSE, "100.00", from_account_id=checking.id)
        updated = await transaction_service.update_transaction(
            db_session, ctx, txn.id, description=None, notes="Q2"
        )
        assert updated.description == "expense 100.00"
        assert updated.notes == "Q2"

    async def test_put_null_description_over_http(self, user_client):
        created = await user_client.post(
            "/financial/accounts",
            json={"name": "Operating", "type": "CHECKING", "initial_balance": "1000.00"},
        )
        posted = await user_client.post(
            "/financial/transactions",
            json={
                "description": "Sale",
                "amount": "10.00",
                "date": "2026-03-02",
                "type": "INCOME",
                "status": "COMPLETED",
                "to_account_id": created.json()["id"],
            },
        )

        txn_id = posted.json()["id"]

        response = await user_client.put(
            f"/financial/transactions/{txn_id}", json={"description": None, "notes": "Walk-in"}
        )
        assert response.status_code == 200
        assert response.json()["description"] == "Sale"
        assert response.json()["notes"] == "Walk-in"

    async def test_complete_with_edit_in_one_call(self, db_session, ctx, checking):
        txn = await transaction_service.create_transaction(
            db_session, ctx, "Draft", "10.00", date(2026, 4, 1), TransactionType.INCOME,
            to_account_id=checking.id,
        )
        await transaction_service.update_transaction(db_session, ctx, txn.id, amount="20.00", status=COMPLETED)
        assert checking.balance == Decimal("1020.00")

    async def test_edit_that_would_overdraw_is_rolled_back(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.EXPENSE, "100.00", from_account_id=checking.id)

        with pytest.raises(NegativeBalanceNotAllowed):
            await transaction_service.update_transaction(db_session, ctx, txn.id, amount="5000.00")

        await db_session.refresh(checking)
        await db_session.refresh(txn)
        assert checking.balance == Decimal("900.00")
        assert txn.amount == Decimal("100.00")


class TestGuards:
    """Negative balances and inactive accounts."""

    async def test_overdraft_rejected(self, db_session, ctx, checking):
        with pytest.raises(NegativeBalanceNotAllowed):
            await _completed(db_session, ctx, TransactionType.EXPENSE, "1000.01", from_account_id=checking.id)
        await db_session.refresh(checking)
        assert checking.balance == Decimal("1000.00")

    async def test_spend_to_exactly_zero(self, db_session, ctx, checking):
        await _completed(db_session, ctx, TransactionType.EXPENSE, "1000.00", from_account_id=checking.id)
        assert checking.balance == Decimal("0.00")

    async def test_failed_transfer_leaves_no_trace(self, db_session, ctx, checking):
        savings = await account_service.create_account(
            db_session, ctx, name="Savings", account_type=AccountType.SAVINGS
        )
        with pytest.raises(NegativeBalanceNotAllowed):
            await _completed(
                db_session, ctx, TransactionType.TRANSFER, "2000.00",
                from_account_id=checking.id, to_account_id=savings.id,
            )
        await db_session.refresh(checking)
        await db_session.refresh(savings)
        assert checking.balance == Decimal("1000.00")
        assert savings.balance == Decimal("0.00")
        _, total, _ = await transaction_service.list_transactions(db_session, ctx)
        assert total == 0

    async def test_inactive_account_rejected(self, db_session, ctx, checking):
        await account_service.update_account(db_session, ctx, checking.id, is_active=False)
        with pytest.raises(AccountInactive):
            await _completed(db_session, ctx, TransactionType.INCOME, "5.00", to_account_id=checking.id)


class TestDelete:
    """Deleting reverses the effect first."""

    async def test_delete_completed(self, db_session, ctx, checking):
        txn = await _completed(db_session, ctx, TransactionType.INCOME, "500.00", to_account_id=checking.id)
        await transaction_service.delete_transaction(db_session, ctx, txn.id)
        assert checking.balance == Decimal("1000.00")
        _, total, _ = await transaction_service.list_transactions(db_session, ctx)
        assert total == 0


class TestAtomicity:
    """A failure after balances moved rolls everything back."""

    async def test_failure_after_balance_change(self, db_session, ctx, checking, card):
        """Both balances already changed when the invoice link blows up."""
        with patch(
            "ledger.services.invoice_service.add_transaction_to_invoice",
            new=AsyncMock(side_effect=RuntimeError("Simulated failure")),
        ):
            with pytest.raises(RuntimeError):
                await _completed(
                    db_session, ctx, TransactionType.TRANSFER, "100.00",
                    from_account_id=checking.id, to_account_id=card.id,
                )

        await db_session.refresh(checking)
        await db_session.refresh(card)
        assert checking.balance == Decimal("1000.00")
        assert card.balance == Decimal("0.00")
        _, total, _ = await transaction_service.list_transactions(db_session, ctx)
        assert total == 0


class TestQueries:
    """Listing and summaries."""

    async def test_list_filters_and_pagination(self, db_session, ctx, checking):
        for day in range(1, 6):
            await transaction_service.create_transaction(
                db_session, ctx, f"Sale {day}", "10.00", date(2026, 5, day), TransactionType.INCOME,
                status=COMPLETED, to_account_id=checking.id, notes="retail" if day % 2 else None,
            )

        items, total, pages = await transaction_service.list_transactions(db_session, ctx, page=1, page_size=2)
        assert total == 5
        assert pages == 3
        assert [t.description for t in items] == ["Sale 5", "Sale 4"]

        items, total, _ = await transaction_service.list_transactions(
            db_session, ctx, start_date=date(2026, 5, 2), end_date=date(2026, 5, 4)
        )
        assert total == 3

        _, total, _ = await transaction_service.list_transactions(db_session, ctx, search="retail")
        assert total == 3

        with pytest.raises(InvalidDateRange):
            await transaction_service.list_transactions(
                db_session, ctx, start_date=date(2026, 5, 4), end_date=date(2026, 5, 1)
            )

    async def test_financial_summary(self, db_session, ctx, checking):
        await _completed(db_session, ctx, TransactionType.INCOME, "3000.00", to_account_id=checking.id)
        await _completed(db_session, ctx, TransactionType.EXPENSE, "150.75", from_account_id=checking.id)
        await transaction_service.create_transaction(
            db_session, ctx, "Pending", "99.00", date(2026, 4, 1), TransactionType.EXPENSE,
            from_account_id=checking.id,
        )

        summary = await transaction_service.get_financial_summary(
            db_session, ctx, date(2026, 4, 1), date(2026, 4, 30)
        )
        assert summary["income"] == Decimal("3000.00")
        assert summary["expense"] == Decimal("150.75")
        assert summary["net"] == Decimal("2849.25")
        assert [a.id for a in summary["accounts"]] == [checking.id]
