"""
Tests for installment purchases.

These tests verify:
  - 100.00 in 3 installments is 33.33 + 33.33 + 33.34
  - One share per consecutive invoice, starting at the purchase's period
  - Future periods whose invoice is no longer OPEN are skipped
  - The whole purchase is reserved against the credit limit once
  - The limit is checked before anything is written
  - Installment count bounds
  - Share transactions can't be edited directly
  - Cancellation of the unbilled shares
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger.exceptions import (
    InsufficientCreditLimit,
    InvalidCreditCardConfig,
    InvalidInstallmentCount,
    TransactionLocked,
)
from ledger.models.credit_card import InvoiceStatus
from ledger.models.transaction import TransactionStatus
from ledger.services import (
    credit_card_service,
    installment_service,
    invoice_service,
    transaction_service,
)

PURCHASE_DATE = date(2026, 3, 5)


async def _laptop(db, ctx, card, total="100.00", parts=3):
    return await installment_service.create_installment_purchase(
        db, ctx, card.id, "Laptop", total, parts, PURCHASE_DATE
    )


class TestCreateInstallment:
    """Splitting a purchase across invoices."""

    async def test_shares_and_invoices(self, db_session, ctx, card):
        installment = await _laptop(db_session, ctx, card)
        assert installment.installment_amount == Decimal("33.33")
        assert installment.first_due_date == date(2026, 3, 20)

        detail = await installment_service.get_installment_detail(db_session, ctx, installment.id)
        shares = detail["shares"]
        assert [s.amount for s in shares] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert [s.installment_number for s in shares] == [1, 2, 3]
        assert [s.due_date for s in shares] == [date(2026, 3, 20), date(2026, 4, 20), date(2026, 5, 20)]
        assert detail["remaining_installments"] == 3
        assert detail["remaining_amount"] == Decimal("100.00")

        for month, share in zip((3, 4, 5), shares):
            invoice = await invoice_service.get_invoice_by_period(db_session, ctx, card.id, month, 2026)
            assert share.invoice_id == invoice.id
            assert invoice.purchases_amount == share.amount

    async def test_share_transactions(self, db_session, ctx, card):
        installment = await _laptop(db_session, ctx, card)
        shares = await installment_service.get_shares(db_session, installment.id)

        txn = await transaction_service.get_transaction(db_session, ctx, shares[1].transaction_id)
        assert txn.description == "Laptop (2/3)"
        assert txn.date == date(2026, 4, 5)
        assert txn.status == TransactionStatus.COMPLETED

        entries = await invoice_service.get_invoice_transactions(db_session, ctx, shares[1].invoice_id)
        assert entries[0]["is_installment"] is True
        assert entries[0]["installment_id"] == installment.id

    async def test_skips_canceled_future_invoice(self, db_session, ctx, card):
        april = await invoice_service.generate_invoice(db_session, ctx, card.id, 4, 2026)
        await invoice_service.cancel_invoice(db_session, ctx, april.id)

        installment = await _laptop(db_session, ctx, card, total="300.00")
        shares = await installment_service.get_shares(db_session, installment.id)

        periods = []
        for share in shares:
            invoice = await invoice_service.get_invoice(db_session, ctx, share.invoice_id)
            periods.append((invoice.reference_month, invoice.status))
        assert periods == [(3, InvoiceStatus.OPEN), (5, InvoiceStatus.OPEN), (6, InvoiceStatus.OPEN)]
        assert [s.due_date for s in shares] == [date(2026, 3, 20), date(2026, 5, 20), date(2026, 6, 20)]

        assert april.status == InvoiceStatus.CANCELED
        assert april.purchases_amount == Decimal("0.00")

    async def test_limit_reserved_once(self, db_session, ctx, card):
        await _laptop(db_session, ctx, card)
        config = await credit_card_service.get_config(db_session, ctx, card.id)
        assert config.used_limit == Decimal("100.00")
        assert config.available_limit == Decimal("4900.00")
        assert card.balance == Decimal("-100.00")

    async def test_limit_checked_before_writing(self, db_session, ctx, card):
        with pytest.raises(InsufficientCreditLimit):
            await _laptop(db_session, ctx, card, total="5000.01", parts=10)

        assert await invoice_service.list_invoices(db_session, ctx, card.id) == []
        assert await installment_service.list_installments(db_session, ctx, card.id) == []
        config = await credit_card_service.get_config(db_session, ctx, card.id)
        assert config.used_limit == Decimal("0.00")

    @pytest.mark.parametrize("parts", [0, 1, 49])
    async def test_count_bounds(self, db_session, ctx, card, parts):
        with pytest.raises(InvalidInstallmentCount):
            await _laptop(db_session, ctx, card, parts=parts)

    async def test_max_installments(self, db_session, ctx, card):
        installment = await _laptop(db_session, ctx, card, total="4800.00", parts=48)
        remaining = await installment_service.get_remaining(db_session, ctx, installment.id)
        assert remaining["remaining_installments"] == 48
        assert remaining["remaining_amount"] == Decimal("4800.00")
        last = await invoice_service.get_invoice_by_period(db_session, ctx, card.id, 2, 2030)
        assert last.purchases_amount == Decimal("100.00")

    async def test_non_card_account(self, db_session, ctx, checking):
        with pytest.raises(InvalidCreditCardConfig):
            await _laptop(db_session, ctx, checking)

    async def test_shares_are_locked(self, db_session, ctx, card):
        installment = await _laptop(db_session, ctx, card)
        shares = await installment_service.get_shares(db_session, installment.id)

        with pytest.raises(TransactionLocked):
            await transaction_service.update_transaction(db_session, ctx, shares[0].transaction_id, amount="1.00")
        with pytest.raises(TransactionLocked):
            await transaction_service.delete_transaction(db_session, ctx, shares[0].transaction_id)


class TestCancelInstallment:
    """Canceling drops the shares that are still on OPEN invoices."""

    async def test_cancel_everything_unbilled(self, db_session, ctx, card):
        installment = await _laptop(db_session, ctx, card)
        await installment_service.cancel_installment(db_session, ctx, installment.id)

        assert installment.is_canceled is True
        config = await credit_card_service.get_config(db_session, ctx, card.id)
        assert config.used_limit == Decimal("0.00")
        assert card.balance == Decimal("0.00")

        remaining = await installment_service.get_remaining(db_session, ctx, installment.id)
        assert remaining["remaining_installments"] == 0

    async def test_billed_share_survives(self, db_session, ctx, card):
        installment = await _laptop(db_session, ctx, card)
        march = await invoice_service.get_invoice_by_period(db_session, ctx, card.id, 3, 2026)
        await invoice_service.close_invoice(db_session, ctx, march.id)

        await installment_service.cancel_installment(db_session, ctx, installment.id)

        shares = await installment_service.get_shares(db_session, installment.id)
        assert [s.is_canceled for s in shares] == [False, True, True]
        config = await credit_card_service.get_config(db_session, ctx, card.id)
        assert config.used_limit == Decimal("33.33")
        assert card.balance == Decimal("-33.33")

        april = await invoice_service.get_invoice_by_period(db_session, ctx, card.id, 4, 2026)
        assert april.status == InvoiceStatus.OPEN
        assert april.purchases_amount == Decimal("0.00")

    async def test_active_only_listing(self, db_session, ctx, card):
        first = await _laptop(db_session, ctx, card)
        second = await _laptop(db_session, ctx, card, total="60.00", parts=2)
        await installment_service.cancel_installment(db_session, ctx, first.id)

        active = await installment_service.list_installments(db_session, ctx, card.id, active_only=True)
        assert [i.id for i in active] == [second.id]
        everything = await installment_service.list_installments(db_session, ctx, card.id)
        assert {i.id for i in everything} == {first.id, second.id}
