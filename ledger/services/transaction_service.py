"""
Transaction service — the ledger's posting engine.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. It handles:
  - Creating, editing, canceling and deleting transactions
  - Applying and reversing their balance effects
  - Negative-balance enforcement
  - Credit card side effects (invoice links and limit usage)

Status machine:
    PENDING ──> COMPLETED ──> CANCELED
       └──────────────────────> CANCELED
  CANCELED is terminal and COMPLETED never goes back to PENDING. Only
  COMPLETED transactions are reflected in balances.

Apply / reverse:
    EXPENSE   from -= amount
    INCOME    to   += amount
    TRANSFER  from -= amount, to += amount
  Reversal is the exact inverse using the amount and accounts recorded on
  the transaction, so cancel-after-complete restores every balance to the
  cent. Editing a COMPLETED transaction reverses the recorded effect and
  applies the new one.

Credit cards:
  An applied transaction touching a CREDIT_CARD account is linked to that
  card's OPEN invoice for the transaction date. An EXPENSE paid with a
  card reserves credit limit (InsufficientCreditLimit aborts the whole
  operation); an INCOME into a card (refund) releases it. Reversal
  unlinks and undoes the limit effect, which is only possible while the
  invoice is still OPEN.
  Balance adjustment rows (is_adjustment) only move balances and skip
  both the invoice and the limit side.

Atomicity:
  Every balance change, invoice link and limit update of one call happens
  inside atomic(db) (a SAVEPOINT). If anything fails halfway, the
  savepoint is rolled back and no partial state is left in the session.

Deadlock prevention:
  Account rows are locked FOR UPDATE in ascending id order, so two
  transfers between the same accounts in opposite directions always lock
  in the same order. with_for_update() is a no-op on SQLite.
"""

import logging
import math
from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.context import RequestContext
from ledger.database import atomic
from ledger.exceptions import (
    AccessDenied,
    AccountInactive,
    InconsistentAccountsForType,
    InvalidAmount,
    InvalidDateRange,
    InvalidStatusTransition,
    NegativeBalanceNotAllowed,
    NotFoundError,
    TransactionLocked,
)
from ledger.models.account import FinancialAccount
from ledger.models.credit_card import (
    CreditCardInstallmentPayment,
    CreditCardInvoice,
    CreditCardInvoicePayment,
)
from ledger.models.transaction import (
    FinancialTag,
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
)
from ledger.services import account_service, credit_card_service, invoice_service

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.COMPLETED, TransactionStatus.CANCELED},
    TransactionStatus.COMPLETED: {TransactionStatus.CANCELED},
    TransactionStatus.CANCELED: set(),
}

# Fields that change where or how much money moves
_POSTING_FIELDS = ("amount", "date", "type", "from_account_id", "to_account_id")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _parse_amount(value):
    amount = money.parse(value)
    if amount <= 0:
        raise InvalidAmount(value)
    return amount


def validate_accounts_for_type(
    txn_type: TransactionType,
    from_account_id: int | None,
    to_account_id: int | None,
) -> None:
    """
    INCOME takes only a destination, EXPENSE only a source, TRANSFER both
    (and they must differ).
    """
    if txn_type == TransactionType.INCOME:
        if to_account_id is None:
            raise InconsistentAccountsForType("INCOME transactions require a destination account")
        if from_account_id is not None:
            raise InconsistentAccountsForType("INCOME transactions cannot have a source account")
    elif txn_type == TransactionType.EXPENSE:
        if from_account_id is None:
            raise InconsistentAccountsForType("EXPENSE transactions require a source account")
        if to_account_id is not None:
            raise InconsistentAccountsForType("EXPENSE transactions cannot have a destination account")
    else:
        if from_account_id is None or to_account_id is None:
            raise InconsistentAccountsForType(
                "TRANSFER transactions require both a source and a destination account"
            )
        if from_account_id == to_account_id:
            raise InconsistentAccountsForType("Source and destination accounts must differ")


def _check_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if target not in _TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, target.value)


async def _lock_accounts(
    db: AsyncSession,
    ctx: RequestContext,
    *account_ids: int | None,
) -> dict[int, FinancialAccount]:
    """Lock the given accounts in ascending id order and check company ownership."""
    accounts = {}
    for account_id in sorted({i for i in account_ids if i is not None}):
        accounts[account_id] = await account_service.get_account(db, ctx, account_id, lock=True)
    return accounts


def _require_active(accounts: dict[int, FinancialAccount], *account_ids: int | None) -> None:
    for account_id in account_ids:
        if account_id is not None and not accounts[account_id].is_active:
            raise AccountInactive(account_id)


async def _resolve_tags(db: AsyncSession, company_id: int, names: list[str]) -> list[FinancialTag]:
    wanted = sorted({name.strip() for name in names if name and name.strip()})
    if not wanted:
        return []

    result = await db.execute(
        select(FinancialTag)
        .where(FinancialTag.company_id == company_id)
        .where(FinancialTag.name.in_(wanted))
    )
    tags = {tag.name: tag for tag in result.scalars().all()}
    for name in wanted:
        if name not in tags:
            tags[name] = FinancialTag(company_id=company_id, name=name)
            db.add(tags[name])
    return [tags[name] for name in wanted]


async def _owner_of(db: AsyncSession, transaction_id: int) -> str | None:
    """Name the record that owns a transaction, if any."""
    payment = await db.execute(
        select(CreditCardInvoicePayment.invoice_id).where(
            CreditCardInvoicePayment.transaction_id == transaction_id
        )
    )
    invoice_id = payment.scalar()
    if invoice_id is not None:
        return f"a payment of invoice {invoice_id}"

    share = await db.execute(
        select(CreditCardInstallmentPayment.installment_id).where(
            CreditCardInstallmentPayment.transaction_id == transaction_id
        )
    )
    installment_id = share.scalar()
    if installment_id is not None:
        return f"installment purchase {installment_id}"
    return None


async def _ensure_not_owned(db: AsyncSession, txn: FinancialTransaction) -> None:
    owner = await _owner_of(db, txn.id)
    if owner is not None:
        raise TransactionLocked(txn.id, owner)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------

async def _apply_effects(
    db: AsyncSession,
    txn: FinancialTransaction,
    accounts: dict[int, FinancialAccount],
    invoice: CreditCardInvoice | None = None,
    installment_id: int | None = None,
    reserve_limit: bool = True,
) -> None:
    source = accounts.get(txn.from_account_id) if txn.from_account_id else None
    dest = accounts.get(txn.to_account_id) if txn.to_account_id else None
    amount = txn.amount

    if source is not None:
        new_source_balance = money.subtract(source.balance, amount)
        if new_source_balance < 0 and not source.allow_negative_balance:
            raise NegativeBalanceNotAllowed(source.id, amount, source.balance)

    card_effects = not txn.is_adjustment

    if txn.type == TransactionType.EXPENSE and source.is_credit_card and reserve_limit and card_effects:
        await credit_card_service.reserve_limit(db, source.id, amount)

    if source is not None:
        source.balance = new_source_balance
    if dest is not None:
        dest.balance = money.add(dest.balance, amount)

    if txn.type == TransactionType.INCOME and dest.is_credit_card and card_effects:
        await credit_card_service.release_limit(db, dest.id, amount)

    for account in (source, dest):
        if account is not None and account.is_credit_card and card_effects:
            target = invoice or await invoice_service.resolve_open_invoice(db, account, txn.date)
            await invoice_service.add_transaction_to_invoice(db, target, txn, installment_id)

    await db.flush()


async def _reverse_effects(
    db: AsyncSession,
    txn: FinancialTransaction,
    accounts: dict[int, FinancialAccount],
) -> None:
    for invoice in await invoice_service.invoices_for_transaction(db, txn.id):
        await invoice_service.remove_transaction_from_invoice(db, invoice, txn.id)

    source = accounts.get(txn.from_account_id) if txn.from_account_id else None
    dest = accounts.get(txn.to_account_id) if txn.to_account_id else None
    amount = txn.amount

    if source is not None:
        source.balance = money.add(source.balance, amount)
    if dest is not None:
        dest.balance = money.subtract(dest.balance, amount)

    card_effects = not txn.is_adjustment

    if txn.type == TransactionType.EXPENSE and source.is_credit_card and card_effects:
        await credit_card_service.release_limit(db, source.id, amount)
    elif txn.type == TransactionType.INCOME and dest.is_credit_card and card_effects:
        await credit_card_service.update_used_limit(db, dest.id, amount, credit_card_service.ADD)

    await db.flush()


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

async def create_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    description: str,
    amount,
    txn_date: date,
    txn_type: TransactionType,
    status: TransactionStatus = TransactionStatus.PENDING,
    notes: str | None = None,
    from_account_id: int | None = None,
    to_account_id: int | None = None,
    category_id: int | None = None,
    tags: list[str] | None = None,
) -> FinancialTransaction:
    """
    Record a transaction, applying its effect right away when COMPLETED.

    Args:
        db: Database session.
        ctx: The acting user and company; becomes created_by / company_id.
        description: Free text.
        amount: Positive amount in any form money.parse() accepts.
        txn_date: Business date; also picks the credit card invoice period.
        txn_type: INCOME, EXPENSE or TRANSFER.
        status: PENDING (default), COMPLETED or CANCELED.
        notes: Optional memo.
        from_account_id / to_account_id: As required by the type.
        category_id: Opaque category reference.
        tags: Tag names, created on first use.

    Raises:
        InvalidAmount: If the amount is not a positive number.
        InconsistentAccountsForType: If the accounts don't fit the type.
        NotFoundError / AccessDenied: Unknown or foreign account.
        AccountInactive: If an account is inactive.
        NegativeBalanceNotAllowed: If a debit would overdraw a guarded account.
        InsufficientCreditLimit: If a card purchase exceeds the available limit.
    """
    txn_type = TransactionType(txn_type)
    status = TransactionStatus(status)
    parsed = _parse_amount(amount)
    validate_accounts_for_type(txn_type, from_account_id, to_account_id)

    accounts = await _lock_accounts(db, ctx, from_account_id, to_account_id)
    _require_active(accounts, from_account_id, to_account_id)

    async with atomic(db):
        txn = FinancialTransaction(
            company_id=ctx.company_id,
            description=description,
            amount=parsed,
            date=txn_date,
            type=txn_type,
            status=status,
            notes=notes,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            category_id=category_id,
            created_by=ctx.user_id,
            tags=await _resolve_tags(db, ctx.company_id, tags or []),
        )
        db.add(txn)
        await db.flush()

        if status == TransactionStatus.COMPLETED:
            await _apply_effects(db, txn, accounts)

    logger.info(
        "Transaction created",
        extra={
            "transaction_id": txn.id,
            "type": txn_type.value,
            "status": status.value,
            "amount": money.to_str(parsed),
            "company_id": ctx.company_id,
        },
    )
    return txn


async def record_installment_share(
    db: AsyncSession,
    ctx: RequestContext,
    account: FinancialAccount,
    description: str,
    amount,
    txn_date: date,
    invoice: CreditCardInvoice,
    installment_id: int,
    category_id: int | None = None,
) -> FinancialTransaction:
    """
    Post one installment share as a COMPLETED EXPENSE on an explicit invoice.

    The purchase's limit is reserved once for the whole amount by the
    installment service, so no limit is consumed here. Callers provide the
    surrounding atomic(db) block.
    """
    txn = FinancialTransaction(
        company_id=ctx.company_id,
        description=description,
        amount=_parse_amount(amount),
        date=txn_date,
        type=TransactionType.EXPENSE,
        status=TransactionStatus.COMPLETED,
        from_account_id=account.id,
        category_id=category_id,
        created_by=ctx.user_id,
    )
    db.add(txn)
    await db.flush()

    await _apply_effects(
        db,
        txn,
        {account.id: account},
        invoice=invoice,
        installment_id=installment_id,
        reserve_limit=False,
    )
    return txn


async def cancel_owned_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    txn: FinancialTransaction,
) -> FinancialTransaction:
    """Cancel a transaction on behalf of the record that owns it."""
    if txn.status == TransactionStatus.CANCELED:
        return txn

    accounts = await _lock_accounts(db, ctx, txn.from_account_id, txn.to_account_id)
    if txn.status == TransactionStatus.COMPLETED:
        await _reverse_effects(db, txn, accounts)
    txn.status = TransactionStatus.CANCELED
    await db.flush()
    return txn


async def get_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    transaction_id: int,
    lock: bool = False,
) -> FinancialTransaction:
    """
    Raises:
        NotFoundError: If the transaction doesn't exist.
        AccessDenied: If it belongs to another company.
    """
    query = select(FinancialTransaction).where(FinancialTransaction.id == transaction_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    txn = result.scalar_one_or_none()

    if txn is None:
        raise NotFoundError("Transaction", transaction_id)
    if txn.company_id != ctx.company_id:
        raise AccessDenied("You do not have access to this transaction")
    return txn


async def update_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    transaction_id: int,
    **fields,
) -> FinancialTransaction:
    """
    Edit a transaction and/or move it through the status machine.

    Accepted fields: description, amount, date, type, status, notes,
    from_account_id, to_account_id, category_id, tags. A null description
    leaves the current one; notes and category_id can be cleared.

    When the transaction is (or becomes) COMPLETED and a posting field
    changes (amount, date, type or accounts), the recorded effect is
    reversed and the new one applied inside one savepoint. Pure metadata
    edits never touch balances.

    Raises:
        InvalidStatusTransition: If the transaction is CANCELED, or the
            requested status change is not allowed.
        TransactionLocked: If an invoice payment or installment owns it.
    """
    txn = await get_transaction(db, ctx, transaction_id, lock=True)
    current = txn.status
    target = TransactionStatus(fields["status"]) if fields.get("status") is not None else current

    if current == TransactionStatus.CANCELED:
        raise InvalidStatusTransition(current.value, target.value)
    if target != current:
        _check_transition(current, target)
    await _ensure_not_owned(db, txn)

    new_type = TransactionType(fields["type"]) if fields.get("type") is not None else txn.type
    new_from = fields["from_account_id"] if "from_account_id" in fields else txn.from_account_id
    new_to = fields["to_account_id"] if "to_account_id" in fields else txn.to_account_id
    validate_accounts_for_type(new_type, new_from, new_to)
    new_amount = _parse_amount(fields["amount"]) if fields.get("amount") is not None else txn.amount
    new_date = fields["date"] if fields.get("date") is not None else txn.date

    posting_changed = (
        new_type != txn.type
        or new_from != txn.from_account_id
        or new_to != txn.to_account_id
        or new_amount != txn.amount
        or new_date != txn.date
    )
    was_applied = current == TransactionStatus.COMPLETED
    will_apply = target == TransactionStatus.COMPLETED
    reapply = was_applied and will_apply and posting_changed

    accounts = await _lock_accounts(db, ctx, txn.from_account_id, txn.to_account_id, new_from, new_to)
    if will_apply and (not was_applied or posting_changed):
        _require_active(accounts, new_from, new_to)

    async with atomic(db):
        if was_applied and (not will_apply or reapply):
            await _reverse_effects(db, txn, accounts)

        txn.type = new_type
        txn.from_account_id = new_from
        txn.to_account_id = new_to
        txn.amount = new_amount
        txn.date = new_date
        txn.status = target
        if fields.get("description") is not None:
            txn.description = fields["description"]
        for attr in ("notes", "category_id"):
            if attr in fields:
                setattr(txn, attr, fields[attr])
        if fields.get("tags") is not None:
            txn.tags = await _resolve_tags(db, ctx.company_id, fields["tags"])
        await db.flush()

        if will_apply and (not was_applied or reapply):
            await _apply_effects(db, txn, accounts)

    logger.info(
        "Transaction updated",
        extra={
            "transaction_id": txn.id,
            "from_status": current.value,
            "to_status": target.value,
            "reposted": posting_changed and will_apply,
        },
    )
    return txn


async def update_status(
    db: AsyncSession,
    ctx: RequestContext,
    transaction_id: int,
    status: TransactionStatus,
) -> FinancialTransaction:
    return await update_transaction(db, ctx, transaction_id, status=status)


async def delete_transaction(db: AsyncSession, ctx: RequestContext, transaction_id: int) -> None:
    """
    Delete a transaction, reversing its effect first if it was COMPLETED.

    Raises:
        TransactionLocked: If an invoice payment or installment owns it.
        InvoiceNotOpen: If it sits on a card invoice that is no longer OPEN.
    """
    txn = await get_transaction(db, ctx, transaction_id, lock=True)
    await _ensure_not_owned(db, txn)
    accounts = await _lock_accounts(db, ctx, txn.from_account_id, txn.to_account_id)

    async with atomic(db):
        if txn.status == TransactionStatus.COMPLETED:
            await _reverse_effects(db, txn, accounts)
        await db.delete(txn)
        await db.flush()

    logger.info("Transaction deleted", extra={"transaction_id": transaction_id, "user_id": ctx.user_id})


async def list_transactions(
    db: AsyncSession,
    ctx: RequestContext,
    start_date: date | None = None,
    end_date: date | None = None,
    txn_type: TransactionType | None = None,
    status: TransactionStatus | None = None,
    account_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[FinancialTransaction], int, int]:
    """
    Filtered, paginated list of the company's transactions, newest first.

    Returns:
        (items, total, pages)

    Raises:
        InvalidDateRange: If start_date is after end_date.
    """
    if start_date and end_date and start_date > end_date:
        raise InvalidDateRange(start_date, end_date)

    filters = [FinancialTransaction.company_id == ctx.company_id]
    if start_date:
        filters.append(FinancialTransaction.date >= start_date)
    if end_date:
        filters.append(FinancialTransaction.date <= end_date)
    if txn_type is not None:
        filters.append(FinancialTransaction.type == TransactionType(txn_type))
    if status is not None:
        filters.append(FinancialTransaction.status == TransactionStatus(status))
    if category_id is not None:
        filters.append(FinancialTransaction.category_id == category_id)
    if account_id is not None:
        filters.append(
            or_(
                FinancialTransaction.from_account_id == account_id,
                FinancialTransaction.to_account_id == account_id,
            )
        )
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                FinancialTransaction.description.ilike(pattern),
                FinancialTransaction.notes.ilike(pattern),
            )
        )

    total = (
        await db.execute(select(func.count(FinancialTransaction.id)).where(*filters))
    ).scalar_one()

    page = max(page, 1)
    result = await db.execute(
        select(FinancialTransaction)
        .where(*filters)
        .order_by(FinancialTransaction.date.desc(), FinancialTransaction.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    pages = math.ceil(total / page_size) if page_size else 0
    return list(result.scalars().all()), total, pages


async def get_financial_summary(
    db: AsyncSession,
    ctx: RequestContext,
    start_date: date,
    end_date: date,
) -> dict:
    """
    Income, expense and net of COMPLETED transactions in a period, plus
    the company's active accounts with their balances.
    """
    if start_date > end_date:
        raise InvalidDateRange(start_date, end_date)

    async def _sum(txn_type: TransactionType):
        result = await db.execute(
            select(FinancialTransaction.amount)
            .where(FinancialTransaction.company_id == ctx.company_id)
            .where(FinancialTransaction.type == txn_type)
            .where(FinancialTransaction.status == TransactionStatus.COMPLETED)
            .where(FinancialTransaction.date >= start_date)
            .where(FinancialTransaction.date <= end_date)
        )
        return money.add(*result.scalars().all())

    income = await _sum(TransactionType.INCOME)
    expense = await _sum(TransactionType.EXPENSE)
    accounts = await account_service.list_accounts(db, ctx, is_active=True)

    return {
        "start_date": start_date,
        "end_date": end_date,
        "income": income,
        "expense": expense,
        "net": money.subtract(income, expense),
        "accounts": accounts,
    }
