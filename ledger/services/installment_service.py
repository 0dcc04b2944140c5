"""
Installment service — splitting one card purchase across several invoices.

A purchase of `total` in N installments becomes N COMPLETED EXPENSE
transactions, one per invoice period starting at the period the purchase
date falls in:

    shares = money.split(total, N)     # last share absorbs the rounding
    share i  ->  dated purchase_date + (i-1) months
             ->  linked to the first OPEN invoice after share i-1's
                 (periods whose invoice is closed, paid or canceled are skipped)
             ->  recorded as CreditCardInstallmentPayment #i

The whole purchase is reserved against the credit limit once, after all
shares are posted, and everything happens inside one atomic(db) block: if
any share fails, no transaction, invoice link or limit change survives.
"""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.config import settings
from ledger.context import RequestContext
from ledger.database import atomic
from ledger.exceptions import (
    AccessDenied,
    AccountInactive,
    InsufficientCreditLimit,
    InvalidAmount,
    InvalidCreditCardConfig,
    InvalidInstallmentCount,
    NotFoundError,
)
from ledger.models.account import AccountType
from ledger.models.credit_card import (
    CreditCardInstallment,
    CreditCardInstallmentPayment,
    CreditCardInvoice,
    InvoiceStatus,
)
from ledger.services import account_service, credit_card_service, invoice_service, transaction_service

logger = logging.getLogger(__name__)


async def create_installment_purchase(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    description: str,
    total_amount,
    number_of_installments: int,
    purchase_date: date,
    category_id: int | None = None,
) -> CreditCardInstallment:
    """
    Post an installment purchase on a credit card.

    Raises:
        InvalidInstallmentCount: If N is outside MIN_INSTALLMENTS..MAX_INSTALLMENTS.
        InvalidAmount: If the total is not positive.
        InvalidCreditCardConfig: If the account is not a credit card.
        InsufficientCreditLimit: If the total exceeds the available limit.
            Checked before anything is written.
    """
    if not settings.MIN_INSTALLMENTS <= number_of_installments <= settings.MAX_INSTALLMENTS:
        raise InvalidInstallmentCount(
            number_of_installments, settings.MIN_INSTALLMENTS, settings.MAX_INSTALLMENTS
        )

    total = money.parse(total_amount)
    if total <= 0:
        raise InvalidAmount(total_amount)

    account = await account_service.get_account(db, ctx, account_id, lock=True)
    if account.type != AccountType.CREDIT_CARD:
        raise InvalidCreditCardConfig(f"Account {account_id} is not a credit card account")
    if not account.is_active:
        raise AccountInactive(account.id)

    config = await credit_card_service.require_config(db, account.id, lock=True)
    if not await credit_card_service.check_limit_available(db, account.id, total):
        raise InsufficientCreditLimit(account.id, total, config.available_limit)

    shares = money.split(total, number_of_installments)

    async with atomic(db):
        first_invoice = await invoice_service.resolve_open_invoice(db, account, purchase_date)

        installment = CreditCardInstallment(
            financial_account_id=account.id,
            company_id=ctx.company_id,
            description=description,
            total_amount=total,
            number_of_installments=number_of_installments,
            installment_amount=shares[0],
            purchase_date=purchase_date,
            first_due_date=first_invoice.due_date,
            category_id=category_id,
            created_by=ctx.user_id,
            is_canceled=False,
        )
        db.add(installment)
        await db.flush()

        invoice = first_invoice
        for number, share in enumerate(shares, start=1):
            if number > 1:
                month, year = credit_card_service.next_period(invoice.reference_month, invoice.reference_year)
                invoice = await invoice_service.open_invoice_from(db, account, month, year)

            txn = await transaction_service.record_installment_share(
                db,
                ctx,
                account,
                description=f"{description} ({number}/{number_of_installments})",
                amount=share,
                txn_date=credit_card_service.add_months(purchase_date, number - 1),
                invoice=invoice,
                installment_id=installment.id,
                category_id=category_id,
            )
            db.add(
                CreditCardInstallmentPayment(
                    installment_id=installment.id,
                    invoice_id=invoice.id,
                    transaction_id=txn.id,
                    installment_number=number,
                    amount=share,
                    due_date=invoice.due_date,
                    is_paid=False,
                    is_canceled=False,
                )
            )

        await db.flush()
        await credit_card_service.reserve_limit(db, account.id, total)

    logger.info(
        "Installment purchase created",
        extra={
            "installment_id": installment.id,
            "account_id": account.id,
            "total": money.to_str(total),
            "installments": number_of_installments,
        },
    )
    return installment


async def get_installment(db: AsyncSession, ctx: RequestContext, installment_id: int) -> CreditCardInstallment:
    result = await db.execute(
        select(CreditCardInstallment).where(CreditCardInstallment.id == installment_id)
    )
    installment = result.scalar_one_or_none()
    if installment is None:
        raise NotFoundError("Installment", installment_id)
    if installment.company_id != ctx.company_id:
        raise AccessDenied("You do not have access to this installment")
    return installment


async def get_shares(db: AsyncSession, installment_id: int) -> list[CreditCardInstallmentPayment]:
    result = await db.execute(
        select(CreditCardInstallmentPayment)
        .where(CreditCardInstallmentPayment.installment_id == installment_id)
        .order_by(CreditCardInstallmentPayment.installment_number)
    )
    return list(result.scalars().all())


def _outstanding(shares: list[CreditCardInstallmentPayment]) -> list[CreditCardInstallmentPayment]:
    return [share for share in shares if not share.is_paid and not share.is_canceled]


async def get_remaining(db: AsyncSession, ctx: RequestContext, installment_id: int) -> dict:
    """Count and amount of shares not yet paid."""
    installment = await get_installment(db, ctx, installment_id)
    outstanding = _outstanding(await get_shares(db, installment.id))
    return {
        "installment_id": installment.id,
        "remaining_installments": len(outstanding),
        "remaining_amount": money.add(*(share.amount for share in outstanding)),
    }


async def get_installment_detail(db: AsyncSession, ctx: RequestContext, installment_id: int) -> dict:
    installment = await get_installment(db, ctx, installment_id)
    shares = await get_shares(db, installment.id)
    outstanding = _outstanding(shares)
    return {
        "installment": installment,
        "shares": shares,
        "remaining_installments": len(outstanding),
        "remaining_amount": money.add(*(share.amount for share in outstanding)),
    }


async def list_installments(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    active_only: bool = False,
) -> list[CreditCardInstallment]:
    """
    Installment purchases of one card, newest first. active_only keeps
    the ones that still have shares to pay.
    """
    await account_service.get_account(db, ctx, account_id)
    result = await db.execute(
        select(CreditCardInstallment)
        .where(CreditCardInstallment.financial_account_id == account_id)
        .order_by(CreditCardInstallment.purchase_date.desc(), CreditCardInstallment.id.desc())
    )
    installments = list(result.scalars().all())
    if not active_only:
        return installments

    active = []
    for installment in installments:
        if installment.is_canceled:
            continue
        if _outstanding(await get_shares(db, installment.id)):
            active.append(installment)
    return active


async def cancel_installment(db: AsyncSession, ctx: RequestContext, installment_id: int) -> CreditCardInstallment:
    """
    Cancel the unbilled part of an installment purchase.

    Unpaid shares whose invoice is still OPEN are canceled through the
    transaction engine, which unlinks them and releases their limit.
    Paid shares, and shares already billed on a closed invoice, are kept.
    """
    installment = await get_installment(db, ctx, installment_id)
    if installment.is_canceled:
        return installment

    canceled = 0
    async with atomic(db):
        for share in _outstanding(await get_shares(db, installment.id)):
            invoice = await db.get(CreditCardInvoice, share.invoice_id)
            if invoice.status != InvoiceStatus.OPEN:
                continue
            txn = await transaction_service.get_transaction(db, ctx, share.transaction_id, lock=True)
            await transaction_service.cancel_owned_transaction(db, ctx, txn)
            share.is_canceled = True
            canceled += 1

        installment.is_canceled = True
        await db.flush()

    logger.info(
        "Installment canceled",
        extra={"installment_id": installment.id, "canceled_installments": canceled},
    )
    return installment


async def mark_invoice_shares_paid(db: AsyncSession, invoice_id: int, paid_at) -> int:
    """Flag every outstanding share billed on a fully paid invoice."""
    result = await db.execute(
        select(CreditCardInstallmentPayment)
        .where(CreditCardInstallmentPayment.invoice_id == invoice_id)
        .where(CreditCardInstallmentPayment.is_paid.is_(False))
        .where(CreditCardInstallmentPayment.is_canceled.is_(False))
    )
    shares = list(result.scalars().all())
    for share in shares:
        share.is_paid = True
        share.paid_at = paid_at
    await db.flush()
    return len(shares)
