"""
Invoice service — the credit card statement lifecycle.

Lifecycle:
    OPEN ──close──> CLOSED ──payment──> PARTIALLY_PAID ──payment──> PAID
      │               │
      └──── due date passed, amount remaining ────> OVERDUE
    CANCELED is administrative and only allowed while no payment exists.

An invoice covers one (account, month, year). A purchase dated before the
card's closing day belongs to that month's invoice, on or after it to the
next month's. If the period's invoice is no longer OPEN, new charges roll
forward to the first OPEN period, which is created on demand.

Totals are always derived by recalculate_invoice() from the link rows
(CreditCardInvoiceTransaction) and payment rows (CreditCardInvoicePayment):

    purchases = Σ linked COMPLETED EXPENSE
    payments  = Σ linked COMPLETED INCOME (refunds and credits)
    total     = previous_balance + purchases + interest + fees - payments
    minimum   = total × minimum_payment_percent / 100
    paid      = Σ invoice payments
    remaining = total - paid

Linked TRANSFERs (invoice payments moving money into the card) are kept
for the audit trail but do not count here; they are represented by the
payment rows instead. Running recalculate_invoice() twice gives the same
result.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.context import RequestContext
from ledger.database import atomic
from ledger.exceptions import (
    AccessDenied,
    InvalidCreditCardConfig,
    InvoiceAlreadyExists,
    InvoiceHasPayments,
    InvoiceNotOpen,
    NotFoundError,
)
from ledger.models.account import AccountType, FinancialAccount
from ledger.models.credit_card import (
    CreditCardConfig,
    CreditCardInvoice,
    CreditCardInvoicePayment,
    CreditCardInvoiceTransaction,
    InvoiceStatus,
)
from ledger.models.transaction import FinancialTransaction, TransactionStatus, TransactionType
from ledger.services import account_service, credit_card_service

logger = logging.getLogger(__name__)

# Statuses whose balance is final enough to carry into the next period
_CARRY_OVER_STATUSES = (
    InvoiceStatus.CLOSED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
)
_OVERDUE_CANDIDATES = (InvoiceStatus.OPEN, InvoiceStatus.CLOSED)


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

async def _find_by_period(
    db: AsyncSession,
    account_id: int,
    month: int,
    year: int,
    lock: bool = False,
) -> CreditCardInvoice | None:
    query = select(CreditCardInvoice).where(
        CreditCardInvoice.financial_account_id == account_id,
        CreditCardInvoice.reference_month == month,
        CreditCardInvoice.reference_year == year,
    )
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def require_invoice(db: AsyncSession, invoice_id: int, lock: bool = False) -> CreditCardInvoice:
    query = select(CreditCardInvoice).where(CreditCardInvoice.id == invoice_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    invoice = result.scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


async def get_invoice(
    db: AsyncSession,
    ctx: RequestContext,
    invoice_id: int,
    lock: bool = False,
) -> CreditCardInvoice:
    """
    Raises:
        NotFoundError: If the invoice doesn't exist.
        AccessDenied: If it belongs to another company.
    """
    invoice = await require_invoice(db, invoice_id, lock=lock)
    if invoice.company_id != ctx.company_id:
        raise AccessDenied("You do not have access to this invoice")
    return invoice


async def _get_card_account(db: AsyncSession, ctx: RequestContext, account_id: int) -> FinancialAccount:
    account = await account_service.get_account(db, ctx, account_id)
    if account.type != AccountType.CREDIT_CARD:
        raise InvalidCreditCardConfig(f"Account {account_id} is not a credit card account")
    return account


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

async def _carried_balance(db: AsyncSession, account_id: int, month: int, year: int):
    previous = credit_card_service.add_months(date(year, month, 1), -1)
    prior = await _find_by_period(db, account_id, previous.month, previous.year)
    if prior is None or prior.status not in _CARRY_OVER_STATUSES:
        return money.ZERO
    return max(prior.remaining_amount, money.ZERO)


async def _create_invoice(
    db: AsyncSession,
    account: FinancialAccount,
    config: CreditCardConfig,
    month: int,
    year: int,
) -> CreditCardInvoice:
    previous_balance = await _carried_balance(db, account.id, month, year)

    invoice = CreditCardInvoice(
        financial_account_id=account.id,
        company_id=account.company_id,
        reference_month=month,
        reference_year=year,
        closing_date=credit_card_service.closing_date_for(config, month, year),
        due_date=credit_card_service.due_date_for(config, month, year),
        previous_balance=previous_balance,
        purchases_amount=money.ZERO,
        payments_amount=money.ZERO,
        interest_amount=money.ZERO,
        fees_amount=money.ZERO,
        total_amount=previous_balance,
        minimum_payment=money.percent_of(previous_balance, config.minimum_payment_percent),
        paid_amount=money.ZERO,
        remaining_amount=previous_balance,
        is_paid=False,
        is_overdue=False,
        status=InvoiceStatus.OPEN,
    )
    db.add(invoice)
    config.last_invoice_generated_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info(
        "Invoice generated",
        extra={
            "invoice_id": invoice.id,
            "account_id": account.id,
            "period": f"{month:02d}/{year}",
            "previous_balance": money.to_str(previous_balance),
        },
    )
    return invoice


async def generate_invoice(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    month: int,
    year: int,
) -> CreditCardInvoice:
    """
    Create the invoice for one period.

    The closing date is the card's closing day clamped to the month's
    last day; the due date is due_days_after_closing days later. The
    previous balance is what remains on the prior period's invoice once
    that invoice is closed.

    Raises:
        InvoiceAlreadyExists: If the period already has an invoice.
        NotFoundError: If the card has no configuration.
    """
    if not 1 <= month <= 12:
        raise InvalidCreditCardConfig(f"Invalid reference month {month}")

    account = await _get_card_account(db, ctx, account_id)
    config = await credit_card_service.require_config(db, account.id)

    if await _find_by_period(db, account.id, month, year) is not None:
        raise InvoiceAlreadyExists(account.id, month, year)

    return await _create_invoice(db, account, config, month, year)


async def resolve_open_invoice(
    db: AsyncSession,
    account: FinancialAccount,
    on_date: date,
) -> CreditCardInvoice:
    """
    The OPEN invoice that a charge dated `on_date` goes on.

    Starts at the period the date belongs to and walks forward past
    periods whose invoice is no longer OPEN, creating the first missing
    one.
    """
    config = await credit_card_service.require_config(db, account.id)
    month, year = credit_card_service.period_for(on_date, config.closing_day)
    return await open_invoice_from(db, account, month, year)


async def open_invoice_from(
    db: AsyncSession,
    account: FinancialAccount,
    month: int,
    year: int,
) -> CreditCardInvoice:
    """The first OPEN invoice at or after the given period, created if missing."""
    config = await credit_card_service.require_config(db, account.id)
    while True:
        invoice = await _find_by_period(db, account.id, month, year, lock=True)
        if invoice is None:
            return await _create_invoice(db, account, config, month, year)
        if invoice.status == InvoiceStatus.OPEN:
            return invoice
        month, year = credit_card_service.next_period(month, year)


# ---------------------------------------------------------------------------
# Transaction links
# ---------------------------------------------------------------------------

async def add_transaction_to_invoice(
    db: AsyncSession,
    invoice: CreditCardInvoice,
    transaction: FinancialTransaction,
    installment_id: int | None = None,
) -> CreditCardInvoice:
    """
    Link a transaction to an OPEN invoice and recalculate it.

    Linking the same transaction twice is a no-op.

    Raises:
        InvoiceNotOpen: If the invoice is not OPEN.
    """
    if invoice.status != InvoiceStatus.OPEN:
        raise InvoiceNotOpen(invoice.id, invoice.status.value)

    existing = await db.execute(
        select(CreditCardInvoiceTransaction.id).where(
            CreditCardInvoiceTransaction.invoice_id == invoice.id,
            CreditCardInvoiceTransaction.transaction_id == transaction.id,
        )
    )
    if existing.first() is not None:
        return invoice

    db.add(
        CreditCardInvoiceTransaction(
            invoice_id=invoice.id,
            transaction_id=transaction.id,
            installment_id=installment_id,
            is_installment=installment_id is not None,
        )
    )
    await db.flush()
    return await recalculate_invoice(db, invoice)


async def remove_transaction_from_invoice(
    db: AsyncSession,
    invoice: CreditCardInvoice,
    transaction_id: int,
) -> CreditCardInvoice:
    """
    Raises:
        InvoiceNotOpen: If the invoice is not OPEN.
    """
    if invoice.status != InvoiceStatus.OPEN:
        raise InvoiceNotOpen(invoice.id, invoice.status.value)

    await db.execute(
        delete(CreditCardInvoiceTransaction).where(
            CreditCardInvoiceTransaction.invoice_id == invoice.id,
            CreditCardInvoiceTransaction.transaction_id == transaction_id,
        )
    )
    return await recalculate_invoice(db, invoice)


async def invoices_for_transaction(db: AsyncSession, transaction_id: int) -> list[CreditCardInvoice]:
    result = await db.execute(
        select(CreditCardInvoice)
        .join(CreditCardInvoiceTransaction, CreditCardInvoiceTransaction.invoice_id == CreditCardInvoice.id)
        .where(CreditCardInvoiceTransaction.transaction_id == transaction_id)
        .order_by(CreditCardInvoice.id)
        .with_for_update()
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

async def _linked_amounts(db: AsyncSession, invoice_id: int, txn_type: TransactionType):
    result = await db.execute(
        select(FinancialTransaction.amount)
        .join(
            CreditCardInvoiceTransaction,
            CreditCardInvoiceTransaction.transaction_id == FinancialTransaction.id,
        )
        .where(CreditCardInvoiceTransaction.invoice_id == invoice_id)
        .where(FinancialTransaction.type == txn_type)
        .where(FinancialTransaction.status == TransactionStatus.COMPLETED)
    )
    return money.add(*result.scalars().all())


async def _paid_amount(db: AsyncSession, invoice_id: int):
    result = await db.execute(
        select(CreditCardInvoicePayment.amount).where(CreditCardInvoicePayment.invoice_id == invoice_id)
    )
    return money.add(*result.scalars().all())


async def recalculate_invoice(db: AsyncSession, invoice: CreditCardInvoice) -> CreditCardInvoice:
    """Re-derive every total from the link and payment rows."""
    config = await credit_card_service.require_config(db, invoice.financial_account_id)

    purchases = await _linked_amounts(db, invoice.id, TransactionType.EXPENSE)
    credits = await _linked_amounts(db, invoice.id, TransactionType.INCOME)
    paid = await _paid_amount(db, invoice.id)

    total = money.subtract(
        money.add(invoice.previous_balance, purchases, invoice.interest_amount, invoice.fees_amount),
        credits,
    )
    remaining = money.subtract(total, paid)

    invoice.purchases_amount = purchases
    invoice.payments_amount = credits
    invoice.total_amount = total
    invoice.minimum_payment = money.percent_of(total, config.minimum_payment_percent)
    invoice.paid_amount = paid
    invoice.remaining_amount = remaining
    invoice.is_paid = remaining <= 0

    # Payment-derived statuses follow the amounts
    if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID):
        invoice.status = InvoiceStatus.PAID if remaining <= 0 else InvoiceStatus.PARTIALLY_PAID

    await db.flush()

    logger.debug(
        "Invoice recalculated",
        extra={
            "invoice_id": invoice.id,
            "purchases": money.to_str(purchases),
            "payments": money.to_str(credits),
            "total": money.to_str(total),
            "paid": money.to_str(paid),
            "remaining": money.to_str(remaining),
        },
    )
    return invoice


async def carry_forward(db: AsyncSession, invoice: CreditCardInvoice) -> CreditCardInvoice | None:
    """
    Refresh the previous balance of the following period's invoice.

    The next invoice may already exist when this one closes or receives a
    payment (a payment transfer lands on the first OPEN period). While it
    is still OPEN its previous_balance follows what remains here.
    """
    month, year = credit_card_service.next_period(invoice.reference_month, invoice.reference_year)
    following = await _find_by_period(db, invoice.financial_account_id, month, year, lock=True)
    if following is None or following.status != InvoiceStatus.OPEN:
        return None

    following.previous_balance = await _carried_balance(db, invoice.financial_account_id, month, year)
    return await recalculate_invoice(db, following)


async def recalculate(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> CreditCardInvoice:
    invoice = await get_invoice(db, ctx, invoice_id, lock=True)
    return await recalculate_invoice(db, invoice)


async def apply_interest(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> CreditCardInvoice:
    """
    Charge interest on the carried balance: previous_balance × interest_rate%.

    Nothing changes when the card has no rate or nothing was carried over.
    """
    invoice = await get_invoice(db, ctx, invoice_id, lock=True)
    config = await credit_card_service.require_config(db, invoice.financial_account_id)

    if not config.interest_rate:
        logger.warning("No interest rate configured for card", extra={"invoice_id": invoice.id})
        return invoice
    if invoice.previous_balance <= 0:
        return invoice

    async with atomic(db):
        invoice.interest_amount = money.percent_of(invoice.previous_balance, config.interest_rate)
        await recalculate_invoice(db, invoice)

    logger.info(
        "Interest applied to invoice",
        extra={"invoice_id": invoice.id, "interest": money.to_str(invoice.interest_amount)},
    )
    return invoice


async def apply_fees(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> CreditCardInvoice:
    """Set the invoice's fees to the card's monthly annual-fee charge."""
    invoice = await get_invoice(db, ctx, invoice_id, lock=True)
    config = await credit_card_service.require_config(db, invoice.financial_account_id)

    if not config.annual_fee_monthly_charge:
        return invoice

    async with atomic(db):
        invoice.fees_amount = config.annual_fee_monthly_charge
        await recalculate_invoice(db, invoice)

    logger.info(
        "Fees applied to invoice",
        extra={"invoice_id": invoice.id, "fees": money.to_str(invoice.fees_amount)},
    )
    return invoice


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

async def close_invoice(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> CreditCardInvoice:
    """
    Recalculate and close an OPEN invoice.

    Raises:
        InvoiceNotOpen: If the invoice is in any other status.
    """
    invoice = await get_invoice(db, ctx, invoice_id, lock=True)
    if invoice.status != InvoiceStatus.OPEN:
        raise InvoiceNotOpen(invoice.id, invoice.status.value)

    async with atomic(db):
        await recalculate_invoice(db, invoice)
        invoice.status = InvoiceStatus.CLOSED
        invoice.closed_at = datetime.now(timezone.utc)
        await db.flush()
        await carry_forward(db, invoice)

    logger.info(
        "Invoice closed",
        extra={
            "invoice_id": invoice.id,
            "total": money.to_str(invoice.total_amount),
            "minimum_payment": money.to_str(invoice.minimum_payment),
        },
    )
    return invoice


async def mark_as_overdue(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> CreditCardInvoice:
    """Flag an unpaid invoice OVERDUE; a paid invoice is left untouched."""
    invoice = await get_invoice(db, ctx, invoice_id, lock=True)
    return await _mark_overdue(db, invoice)


async def _mark_overdue(db: AsyncSession, invoice: CreditCardInvoice) -> CreditCardInvoice:
    if invoice.is_paid:
        logger.warning("Cannot mark paid invoice as overdue", extra={"invoice_id": invoice.id})
        return invoice

    invoice.status = InvoiceStatus.OVERDUE
    invoice.is_overdue = True
    await db.flush()

    logger.info("Invoice marked as overdue", extra={"invoice_id": invoice.id})
    return invoice


async def get_overdue_invoices(
    db: AsyncSession,
    ctx: RequestContext,
    today: date | None = None,
) -> list[CreditCardInvoice]:
    result = await db.execute(
        select(CreditCardInvoice)
        .where(CreditCardInvoice.company_id == ctx.company_id)
        .where(CreditCardInvoice.due_date < (today or date.today()))
        .where(CreditCardInvoice.is_paid.is_(False))
        .where(CreditCardInvoice.status.in_(_OVERDUE_CANDIDATES))
        .order_by(CreditCardInvoice.due_date)
    )
    return list(result.scalars().all())


async def mark_overdue_invoices(
    db: AsyncSession,
    ctx: RequestContext,
    today: date | None = None,
) -> list[CreditCardInvoice]:
    """Sweep the company's past-due unpaid OPEN and CLOSED invoices to OVERDUE."""
    invoices = await get_overdue_invoices(db, ctx, today)
    async with atomic(db):
        for invoice in invoices:
            await _mark_overdue(db, invoice)
    return invoices


async def cancel_invoice(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> CreditCardInvoice:
    """
    Administratively cancel an invoice.

    Raises:
        InvoiceHasPayments: If any payment was applied to it.
    """
    invoice = await get_invoice(db, ctx, invoice_id, lock=True)

    payments = await db.execute(
        select(func.count(CreditCardInvoicePayment.id)).where(
            CreditCardInvoicePayment.invoice_id == invoice.id
        )
    )
    if payments.scalar_one():
        raise InvoiceHasPayments(invoice.id)

    invoice.status = InvoiceStatus.CANCELED
    await db.flush()

    logger.info("Invoice canceled", extra={"invoice_id": invoice.id, "user_id": ctx.user_id})
    return invoice


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_current_invoice(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
) -> CreditCardInvoice | None:
    """The oldest OPEN invoice of the card, if any."""
    await _get_card_account(db, ctx, account_id)
    result = await db.execute(
        select(CreditCardInvoice)
        .where(CreditCardInvoice.financial_account_id == account_id)
        .where(CreditCardInvoice.status == InvoiceStatus.OPEN)
        .order_by(CreditCardInvoice.reference_year, CreditCardInvoice.reference_month)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_invoice_by_period(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    month: int,
    year: int,
) -> CreditCardInvoice | None:
    await _get_card_account(db, ctx, account_id)
    return await _find_by_period(db, account_id, month, year)


async def list_invoices(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    status: InvoiceStatus | None = None,
    limit: int = 12,
    offset: int = 0,
) -> list[CreditCardInvoice]:
    """Invoices of one card, newest period first."""
    await _get_card_account(db, ctx, account_id)
    query = (
        select(CreditCardInvoice)
        .where(CreditCardInvoice.financial_account_id == account_id)
        .order_by(CreditCardInvoice.reference_year.desc(), CreditCardInvoice.reference_month.desc())
        .limit(limit)
        .offset(offset)
    )
    if status is not None:
        query = query.where(CreditCardInvoice.status == InvoiceStatus(status))
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_invoice_transactions(db: AsyncSession, ctx: RequestContext, invoice_id: int) -> list[dict]:
    """Linked transactions in date order, each with its installment marker."""
    invoice = await get_invoice(db, ctx, invoice_id)
    result = await db.execute(
        select(FinancialTransaction, CreditCardInvoiceTransaction)
        .join(
            CreditCardInvoiceTransaction,
            CreditCardInvoiceTransaction.transaction_id == FinancialTransaction.id,
        )
        .where(CreditCardInvoiceTransaction.invoice_id == invoice.id)
        .order_by(FinancialTransaction.date, FinancialTransaction.id)
    )
    return [
        {
            "transaction": txn,
            "is_installment": link.is_installment,
            "installment_id": link.installment_id,
        }
        for txn, link in result.all()
    ]
