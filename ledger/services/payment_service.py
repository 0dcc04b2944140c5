"""
Payment service — paying credit card invoices.

A payment is a COMPLETED TRANSFER from a company account into the card
account, posted through the transaction engine, plus a
CreditCardInvoicePayment row tying the money to one invoice. After each
payment the invoice is recalculated and moves to PAID (nothing remains)
or PARTIALLY_PAID, and the paid amount is released from the card's used
limit. When an invoice becomes fully paid, the installment shares billed
on it are marked paid too.

Amounts:
    FULL     remaining amount
    MINIMUM  min(minimum payment, remaining amount)
    PARTIAL  caller's amount, at least the minimum and at most what remains
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.context import RequestContext
from ledger.database import atomic
from ledger.exceptions import (
    AboveTotalAmount,
    BelowMinimumPayment,
    InvalidAmount,
    InvalidDateRange,
    InvoiceAlreadyPaid,
    InvoiceNotPayable,
    ValidationError,
)
from ledger.models.account import FinancialAccount
from ledger.models.credit_card import (
    CreditCardInvoice,
    CreditCardInvoicePayment,
    InvoiceStatus,
    PaymentType,
)
from ledger.models.transaction import TransactionStatus, TransactionType
from ledger.services import (
    account_service,
    credit_card_service,
    installment_service,
    invoice_service,
    transaction_service,
)

logger = logging.getLogger(__name__)


def _ensure_payable(invoice: CreditCardInvoice) -> None:
    if invoice.is_paid or invoice.status == InvoiceStatus.PAID:
        raise InvoiceAlreadyPaid(invoice.id)
    if invoice.status == InvoiceStatus.CANCELED:
        raise InvoiceNotPayable(f"Invoice {invoice.id} is canceled")
    if invoice.remaining_amount <= 0:
        raise InvoiceNotPayable(f"Invoice {invoice.id} has nothing left to pay")


async def _source_account_id(db: AsyncSession, ctx: RequestContext, from_account_id: int | None) -> int:
    if from_account_id is not None:
        return from_account_id
    default = await account_service.get_default_account(db, ctx)
    if default is None:
        raise ValidationError("No paying account given and the company has no default account")
    return default.id


async def process_payment(
    db: AsyncSession,
    ctx: RequestContext,
    invoice_id: int,
    amount,
    payment_type: PaymentType,
    from_account_id: int | None = None,
    payment_date: date | None = None,
    notes: str | None = None,
) -> CreditCardInvoicePayment:
    """
    Apply one payment to an invoice.

    Steps, all inside one atomic(db) block:
      1. TRANSFER paying account -> card account (COMPLETED)
      2. CreditCardInvoicePayment row
      3. recalculate the invoice
      4. PAID or PARTIALLY_PAID; release the paid amount from used limit
      5. refresh the next period's previous balance
      6. fully paid -> mark the invoice's installment shares paid

    Raises:
        InvoiceAlreadyPaid: If the invoice is already paid.
        InvoiceNotPayable: If it is canceled or nothing remains.
        NegativeBalanceNotAllowed: If the paying account can't cover it.
    """
    invoice = await invoice_service.get_invoice(db, ctx, invoice_id, lock=True)
    _ensure_payable(invoice)

    value = money.parse(amount)
    if value <= 0:
        raise InvalidAmount(amount)

    payment_date = payment_date or date.today()
    source_id = await _source_account_id(db, ctx, from_account_id)
    label = f"{invoice.reference_month:02d}/{invoice.reference_year}"

    async with atomic(db):
        transfer = await transaction_service.create_transaction(
            db,
            ctx,
            description=f"Credit card invoice payment {label}",
            amount=value,
            txn_date=payment_date,
            txn_type=TransactionType.TRANSFER,
            status=TransactionStatus.COMPLETED,
            notes=notes or f"{payment_type.value.lower()} payment",
            from_account_id=source_id,
            to_account_id=invoice.financial_account_id,
        )

        payment = CreditCardInvoicePayment(
            invoice_id=invoice.id,
            transaction_id=transfer.id,
            amount=value,
            payment_type=payment_type,
            payment_date=payment_date,
            notes=notes,
            created_by=ctx.user_id,
        )
        db.add(payment)
        await db.flush()

        await invoice_service.recalculate_invoice(db, invoice)

        if invoice.remaining_amount <= 0:
            paid_at = datetime.now(timezone.utc)
            invoice.status = InvoiceStatus.PAID
            invoice.is_paid = True
            invoice.paid_at = paid_at
        else:
            invoice.status = InvoiceStatus.PARTIALLY_PAID
        await db.flush()

        await credit_card_service.release_limit(db, invoice.financial_account_id, value)
        await invoice_service.carry_forward(db, invoice)

        if invoice.is_paid:
            await installment_service.mark_invoice_shares_paid(db, invoice.id, invoice.paid_at)

    logger.info(
        "Invoice payment processed",
        extra={
            "invoice_id": invoice.id,
            "payment_id": payment.id,
            "amount": money.to_str(value),
            "payment_type": payment_type.value,
            "transaction_id": transfer.id,
            "status": invoice.status.value,
        },
    )
    return payment


async def pay_invoice_full(
    db: AsyncSession,
    ctx: RequestContext,
    invoice_id: int,
    from_account_id: int | None = None,
    payment_date: date | None = None,
    notes: str | None = None,
) -> CreditCardInvoicePayment:
    """Pay everything that remains on the invoice."""
    invoice = await invoice_service.get_invoice(db, ctx, invoice_id)
    _ensure_payable(invoice)
    return await process_payment(
        db, ctx, invoice_id, invoice.remaining_amount, PaymentType.FULL,
        from_account_id=from_account_id, payment_date=payment_date, notes=notes,
    )


async def pay_invoice_minimum(
    db: AsyncSession,
    ctx: RequestContext,
    invoice_id: int,
    from_account_id: int | None = None,
    payment_date: date | None = None,
    notes: str | None = None,
) -> CreditCardInvoicePayment:
    """Pay the minimum payment, or what remains if that is less."""
    invoice = await invoice_service.get_invoice(db, ctx, invoice_id)
    _ensure_payable(invoice)
    amount = min(invoice.minimum_payment, invoice.remaining_amount)
    return await process_payment(
        db, ctx, invoice_id, amount, PaymentType.MINIMUM,
        from_account_id=from_account_id, payment_date=payment_date, notes=notes,
    )


async def pay_invoice_partial(
    db: AsyncSession,
    ctx: RequestContext,
    invoice_id: int,
    amount,
    from_account_id: int | None = None,
    payment_date: date | None = None,
    notes: str | None = None,
) -> CreditCardInvoicePayment:
    """
    Pay a chosen amount.

    Raises:
        BelowMinimumPayment: If the amount is below the minimum payment
            (or below what remains, when less than the minimum remains).
        AboveTotalAmount: If the amount is above what remains to be paid.
    """
    invoice = await invoice_service.get_invoice(db, ctx, invoice_id)
    _ensure_payable(invoice)

    value = money.parse(amount)
    floor = min(invoice.minimum_payment, invoice.remaining_amount)
    if value < floor:
        raise BelowMinimumPayment(value, floor)
    if value > invoice.remaining_amount:
        raise AboveTotalAmount(value, invoice.remaining_amount)

    return await process_payment(
        db, ctx, invoice_id, value, PaymentType.PARTIAL,
        from_account_id=from_account_id, payment_date=payment_date, notes=notes,
    )


async def get_invoice_payments(
    db: AsyncSession,
    ctx: RequestContext,
    invoice_id: int,
) -> list[CreditCardInvoicePayment]:
    invoice = await invoice_service.get_invoice(db, ctx, invoice_id)
    result = await db.execute(
        select(CreditCardInvoicePayment)
        .where(CreditCardInvoicePayment.invoice_id == invoice.id)
        .order_by(CreditCardInvoicePayment.payment_date.desc(), CreditCardInvoicePayment.id.desc())
    )
    return list(result.scalars().all())


async def get_payment_history(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int | None = None,
) -> list[CreditCardInvoicePayment]:
    """Payments made to one card, newest first."""
    await account_service.get_account(db, ctx, account_id)
    if start_date and end_date and start_date > end_date:
        raise InvalidDateRange(start_date, end_date)

    query = (
        select(CreditCardInvoicePayment)
        .join(CreditCardInvoice, CreditCardInvoice.id == CreditCardInvoicePayment.invoice_id)
        .where(CreditCardInvoice.financial_account_id == account_id)
        .order_by(CreditCardInvoicePayment.payment_date.desc(), CreditCardInvoicePayment.id.desc())
    )
    if start_date:
        query = query.where(CreditCardInvoicePayment.payment_date >= start_date)
    if end_date:
        query = query.where(CreditCardInvoicePayment.payment_date <= end_date)
    if limit:
        query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_payment_summary(
    db: AsyncSession,
    ctx: RequestContext,
    start_date: date,
    end_date: date,
) -> dict:
    """Company-wide card payments in a period, by payment type and by card."""
    if start_date > end_date:
        raise InvalidDateRange(start_date, end_date)

    result = await db.execute(
        select(CreditCardInvoicePayment, FinancialAccount)
        .join(CreditCardInvoice, CreditCardInvoice.id == CreditCardInvoicePayment.invoice_id)
        .join(FinancialAccount, FinancialAccount.id == CreditCardInvoice.financial_account_id)
        .where(CreditCardInvoice.company_id == ctx.company_id)
        .where(CreditCardInvoicePayment.payment_date >= start_date)
        .where(CreditCardInvoicePayment.payment_date <= end_date)
    )
    rows = result.all()

    by_type = {payment_type.value: money.ZERO for payment_type in PaymentType}
    by_account: dict[int, dict] = {}
    for payment, account in rows:
        by_type[payment.payment_type.value] = money.add(by_type[payment.payment_type.value], payment.amount)
        entry = by_account.setdefault(
            account.id,
            {"account_id": account.id, "account_name": account.name, "total": money.ZERO, "count": 0},
        )
        entry["total"] = money.add(entry["total"], payment.amount)
        entry["count"] += 1

    return {
        "start_date": start_date,
        "end_date": end_date,
        "total_paid": money.add(*(payment.amount for payment, _ in rows)),
        "payment_count": len(rows),
        "by_type": by_type,
        "by_account": sorted(by_account.values(), key=lambda entry: entry["account_name"]),
    }
