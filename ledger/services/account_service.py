"""
Account service — the company's accounts and their stored balances.

This module handles:
  - Account creation, update and deletion
  - Account retrieval (single or filtered list, scoped to a company)
  - Balance verification (stored vs. computed from transactions)
  - Default-account selection
  - Administrative balance adjustment and negative-balance policy

Company scoping:
  Every function receives the RequestContext. An account belonging to
  another company is reported as AccessDenied, never silently filtered,
  so callers can tell "does not exist" from "not yours".

Balance adjustment:
  adjust_balance() never writes a bare balance. It records a COMPLETED
  INCOME or EXPENSE for the difference, so the stored balance keeps
  matching the transaction history that get_balance() recomputes.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.context import RequestContext
from ledger.database import atomic
from ledger.exceptions import (
    AccessDenied,
    AccountInactive,
    ActiveAccountExists,
    CreditCardRequiresNegative,
    DuplicateAccountName,
    HasTransactions,
    NegativeBalanceNotAllowed,
    NegativeBalancePresent,
    NotFoundError,
)
from ledger.models.account import AccountType, FinancialAccount
from ledger.models.credit_card import CreditCardConfig
from ledger.models.transaction import FinancialTransaction, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)


async def get_account(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    lock: bool = False,
) -> FinancialAccount:
    """
    Get a single account, verifying it belongs to the caller's company.

    Args:
        db: Database session.
        ctx: The acting user and company.
        account_id: The account to retrieve.
        lock: Read the row FOR UPDATE (no-op on SQLite).

    Raises:
        NotFoundError: If the account doesn't exist.
        AccessDenied: If the account belongs to another company.
    """
    query = select(FinancialAccount).where(FinancialAccount.id == account_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    account = result.scalar_one_or_none()

    if account is None:
        raise NotFoundError("Account", account_id)
    if account.company_id != ctx.company_id:
        raise AccessDenied("You do not have access to this account")

    return account


async def _ensure_unique_name(
    db: AsyncSession,
    company_id: int,
    name: str,
    exclude_id: int | None = None,
) -> None:
    query = select(FinancialAccount.id).where(
        FinancialAccount.company_id == company_id,
        FinancialAccount.name == name,
    )
    if exclude_id is not None:
        query = query.where(FinancialAccount.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise DuplicateAccountName(name)


async def _ensure_single_active_of_type(
    db: AsyncSession,
    company_id: int,
    account_type: AccountType,
    exclude_id: int | None = None,
) -> None:
    """A company holds one active account per type; credit cards are exempt."""
    if account_type == AccountType.CREDIT_CARD:
        return
    query = select(FinancialAccount.id).where(
        FinancialAccount.company_id == company_id,
        FinancialAccount.type == account_type,
        FinancialAccount.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.where(FinancialAccount.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise ActiveAccountExists(account_type.value)


async def _clear_default(db: AsyncSession, company_id: int, exclude_id: int | None = None) -> None:
    # Flushed before the target row is marked, so the partial unique index
    # never sees two defaults at once.
    query = (
        select(FinancialAccount)
        .where(FinancialAccount.company_id == company_id)
        .where(FinancialAccount.is_default.is_(True))
    )
    if exclude_id is not None:
        query = query.where(FinancialAccount.id != exclude_id)
    for account in (await db.execute(query)).scalars().all():
        account.is_default = False
    await db.flush()


async def create_account(
    db: AsyncSession,
    ctx: RequestContext,
    name: str,
    account_type: AccountType = AccountType.CHECKING,
    initial_balance=0,
    account_number: str | None = None,
    bank_name: str | None = None,
    allow_negative_balance: bool = False,
    is_default: bool = False,
) -> FinancialAccount:
    """
    Create a new account for the caller's company.

    Credit card accounts always allow negative balances (the balance is
    the amount owed). The initial balance becomes both the opening and
    the current balance.

    Raises:
        DuplicateAccountName: If the company already has an account by that name.
        ActiveAccountExists: If an active account of the same type exists.
        NegativeBalanceNotAllowed: If the initial balance is negative and
            the account does not allow negative balances.
    """
    account_type = AccountType(account_type)
    initial = money.parse(initial_balance)
    if account_type == AccountType.CREDIT_CARD:
        allow_negative_balance = True

    await _ensure_unique_name(db, ctx.company_id, name)
    await _ensure_single_active_of_type(db, ctx.company_id, account_type)

    if initial < 0 and not allow_negative_balance:
        raise NegativeBalanceNotAllowed(0, initial, money.ZERO)

    async with atomic(db):
        if is_default:
            await _clear_default(db, ctx.company_id)

        account = FinancialAccount(
            company_id=ctx.company_id,
            name=name,
            type=account_type,
            account_number=account_number,
            bank_name=bank_name,
            initial_balance=initial,
            balance=initial,
            is_active=True,
            is_default=is_default,
            allow_negative_balance=allow_negative_balance,
        )
        db.add(account)
        await db.flush()

    logger.info(
        "Account created",
        extra={"account_id": account.id, "company_id": ctx.company_id, "type": account_type.value},
    )
    return account


async def update_account(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    **fields,
) -> FinancialAccount:
    """
    Update account attributes.

    Accepted fields: name, type, account_number, bank_name, is_active,
    is_default, allow_negative_balance. The balance is never edited here;
    use adjust_balance() for that.

    Reactivating an account or changing its type re-checks the one-active-
    account-per-type rule. Deactivating the default account clears the
    default flag.

    Raises:
        HasTransactions: If the type changes on an account that already
            has transactions.
    """
    account = await get_account(db, ctx, account_id, lock=True)

    name = fields.get("name")
    if name is not None and name != account.name:
        await _ensure_unique_name(db, ctx.company_id, name, exclude_id=account.id)

    new_type = AccountType(fields["type"]) if fields.get("type") is not None else account.type
    if new_type != account.type:
        linked = await count_transactions(db, account.id)
        if linked:
            raise HasTransactions(account.id, linked, action="changed to another type")
    new_active = fields["is_active"] if fields.get("is_active") is not None else account.is_active
    if new_active and (new_type != account.type or not account.is_active):
        await _ensure_single_active_of_type(db, ctx.company_id, new_type, exclude_id=account.id)

    allow_negative = fields.get("allow_negative_balance")
    if new_type == AccountType.CREDIT_CARD:
        if allow_negative is False:
            raise CreditCardRequiresNegative(account.id)
        allow_negative = True
    elif allow_negative is False and account.allow_negative_balance and account.balance < 0:
        raise NegativeBalancePresent(account.id, account.balance)

    async with atomic(db):
        if name is not None:
            account.name = name
        for attr in ("account_number", "bank_name"):
            if attr in fields:
                setattr(account, attr, fields[attr])
        account.type = new_type
        account.is_active = new_active
        if allow_negative is not None:
            account.allow_negative_balance = allow_negative

        wants_default = fields.get("is_default")
        if not new_active:
            account.is_default = False
        elif wants_default is True and not account.is_default:
            await _clear_default(db, ctx.company_id, exclude_id=account.id)
            account.is_default = True
        elif wants_default is False:
            account.is_default = False
        await db.flush()

    logger.info("Account updated", extra={"account_id": account.id, "fields": sorted(fields)})
    return account


async def count_transactions(db: AsyncSession, account_id: int) -> int:
    result = await db.execute(
        select(func.count(FinancialTransaction.id)).where(
            or_(
                FinancialTransaction.from_account_id == account_id,
                FinancialTransaction.to_account_id == account_id,
            )
        )
    )
    return result.scalar_one()


async def delete_account(db: AsyncSession, ctx: RequestContext, account_id: int) -> None:
    """
    Delete an account that no transaction references.

    Accounts with history must be deactivated instead, otherwise the
    ledger would lose the other side of their transfers.

    Raises:
        HasTransactions: If any transaction references the account.
    """
    account = await get_account(db, ctx, account_id, lock=True)

    linked = await count_transactions(db, account.id)
    if linked:
        raise HasTransactions(account.id, linked)

    async with atomic(db):
        await db.execute(
            delete(CreditCardConfig).where(CreditCardConfig.financial_account_id == account.id)
        )
        await db.delete(account)
        await db.flush()

    logger.info("Account deleted", extra={"account_id": account_id, "company_id": ctx.company_id})


async def list_accounts(
    db: AsyncSession,
    ctx: RequestContext,
    account_type: AccountType | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    allow_negative_balance: bool | None = None,
) -> list[FinancialAccount]:
    """List the company's accounts, default first, then by name."""
    query = select(FinancialAccount).where(FinancialAccount.company_id == ctx.company_id)

    if account_type is not None:
        query = query.where(FinancialAccount.type == AccountType(account_type))
    if is_active is not None:
        query = query.where(FinancialAccount.is_active.is_(is_active))
    if allow_negative_balance is not None:
        query = query.where(FinancialAccount.allow_negative_balance.is_(allow_negative_balance))
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                FinancialAccount.name.ilike(pattern),
                FinancialAccount.bank_name.ilike(pattern),
                FinancialAccount.account_number.ilike(pattern),
            )
        )

    query = query.order_by(FinancialAccount.is_default.desc(), FinancialAccount.name)
    result = await db.execute(query)
    return list(result.scalars().all())


async def compute_balance_from_transactions(db: AsyncSession, account: FinancialAccount) -> Decimal:
    """
    Recompute the balance from the opening balance and every COMPLETED
    transaction. This is the integrity-check counterpart to the stored
    balance.
    """
    completed = FinancialTransaction.status == TransactionStatus.COMPLETED

    incoming = await db.execute(
        select(FinancialTransaction.amount)
        .where(completed)
        .where(FinancialTransaction.to_account_id == account.id)
        .where(FinancialTransaction.type.in_([TransactionType.INCOME, TransactionType.TRANSFER]))
    )
    outgoing = await db.execute(
        select(FinancialTransaction.amount)
        .where(completed)
        .where(FinancialTransaction.from_account_id == account.id)
        .where(FinancialTransaction.type.in_([TransactionType.EXPENSE, TransactionType.TRANSFER]))
    )

    # Summed in Python so the ScaledDecimal conversion applies to each row
    total_in = money.add(*incoming.scalars().all())
    total_out = money.add(*outgoing.scalars().all())
    return money.subtract(money.add(account.initial_balance, total_in), total_out)


async def get_balance(db: AsyncSession, ctx: RequestContext, account_id: int) -> dict:
    """
    Get the account balance, both stored and computed from transactions.

    Returns:
        Dict with account_id, balance, computed_balance, initial_balance, match.
    """
    account = await get_account(db, ctx, account_id)
    computed = await compute_balance_from_transactions(db, account)

    return {
        "account_id": account.id,
        "balance": account.balance,
        "computed_balance": computed,
        "initial_balance": account.initial_balance,
        "match": account.balance == computed,
    }


async def set_default(db: AsyncSession, ctx: RequestContext, account_id: int) -> FinancialAccount:
    """
    Make an account the company's default, clearing any other default.

    Raises:
        AccountInactive: If the account is inactive.
    """
    account = await get_account(db, ctx, account_id, lock=True)
    if not account.is_active:
        raise AccountInactive(account.id)

    async with atomic(db):
        await _clear_default(db, ctx.company_id, exclude_id=account.id)
        account.is_default = True
        await db.flush()

    logger.info("Default account set", extra={"account_id": account.id, "company_id": ctx.company_id})
    return account


async def unset_default(db: AsyncSession, ctx: RequestContext, account_id: int) -> FinancialAccount:
    account = await get_account(db, ctx, account_id, lock=True)
    account.is_default = False
    await db.flush()
    return account


async def get_default_account(db: AsyncSession, ctx: RequestContext) -> FinancialAccount | None:
    result = await db.execute(
        select(FinancialAccount)
        .where(FinancialAccount.company_id == ctx.company_id)
        .where(FinancialAccount.is_default.is_(True))
        .where(FinancialAccount.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def adjust_balance(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    new_balance,
    reason: str | None = None,
) -> FinancialAccount:
    """
    Set an account's balance to a target value through an audit transaction.

    A positive difference is recorded as a COMPLETED INCOME into the
    account, a negative one as a COMPLETED EXPENSE out of it, both
    created by ctx.user_id. A zero difference changes nothing.

    Raises:
        NegativeBalanceNotAllowed: If the target is negative and the
            account does not allow negative balances.
    """
    target = money.parse(new_balance)
    account = await get_account(db, ctx, account_id, lock=True)

    if target < 0 and not account.allow_negative_balance:
        raise NegativeBalanceNotAllowed(account.id, money.subtract(account.balance, target), account.balance)

    delta = money.subtract(target, account.balance)
    if delta == 0:
        return account

    async with atomic(db):
        audit = FinancialTransaction(
            company_id=ctx.company_id,
            description=reason or "Balance adjustment",
            amount=abs(delta),
            date=date.today(),
            type=TransactionType.INCOME if delta > 0 else TransactionType.EXPENSE,
            status=TransactionStatus.COMPLETED,
            notes=f"Balance adjusted from {account.balance:.2f} to {target:.2f}",
            from_account_id=account.id if delta < 0 else None,
            to_account_id=account.id if delta > 0 else None,
            created_by=ctx.user_id,
            is_adjustment=True,
        )
        db.add(audit)
        account.balance = target
        await db.flush()

    logger.info(
        "Balance adjusted",
        extra={
            "account_id": account.id,
            "delta": money.to_str(delta),
            "transaction_id": audit.id,
            "user_id": ctx.user_id,
        },
    )
    return account


async def toggle_negative_balance(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    allow: bool,
) -> FinancialAccount:
    """
    Allow or disallow negative balances on an account.

    Raises:
        CreditCardRequiresNegative: If disallowing on a credit card account.
        NegativeBalancePresent: If disallowing while the balance is below zero.
    """
    account = await get_account(db, ctx, account_id, lock=True)

    if not allow:
        if account.is_credit_card:
            raise CreditCardRequiresNegative(account.id)
        if account.balance < 0:
            raise NegativeBalancePresent(account.id, account.balance)

    account.allow_negative_balance = allow
    await db.flush()

    logger.info(
        "Negative balance policy changed",
        extra={"account_id": account.id, "allow_negative_balance": allow},
    )
    return account
