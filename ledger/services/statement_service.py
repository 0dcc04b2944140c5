"""
Statement service — movement summaries over selected accounts.

Walks the COMPLETED transactions that touch the selected accounts and
buckets them by day, week (Sunday to Saturday) or month. Each
transaction contributes from the point of view of the selection:

    INCOME    into a selected account        -> income
    EXPENSE   out of a selected account      -> expense
    TRANSFER  out of a selected account      -> expense
              into a selected account        -> income

A transfer between two selected accounts therefore shows up on both
sides and nets to zero.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.context import RequestContext
from ledger.exceptions import InvalidDateRange, InvalidGroupBy
from ledger.models.transaction import FinancialTransaction, TransactionStatus, TransactionType
from ledger.services import account_service

logger = logging.getLogger(__name__)

GROUP_BY_OPTIONS = ("day", "week", "month")

INCOME = "INCOME"
EXPENSE = "EXPENSE"


def _week_start(value: date) -> date:
    # date.weekday(): Monday is 0, so Sunday is 6
    return value - timedelta(days=(value.weekday() + 1) % 7)


def period_bounds(value: date, group_by: str) -> tuple[str, date, date]:
    """Key, first day and last day of the period that contains `value`."""
    if group_by == "day":
        return value.isoformat(), value, value
    if group_by == "week":
        start = _week_start(value)
        return start.isoformat(), start, start + timedelta(days=6)

    start = value.replace(day=1)
    following = date(start.year + (start.month == 12), start.month % 12 + 1, 1)
    return f"{start.year}-{start.month:02d}", start, following - timedelta(days=1)


def _movements(txn: FinancialTransaction, selected: set[int]) -> list[tuple[str, int]]:
    """(direction, account_id) pairs a transaction contributes."""
    moves = []
    if txn.type == TransactionType.INCOME and txn.to_account_id in selected:
        moves.append((INCOME, txn.to_account_id))
    elif txn.type == TransactionType.EXPENSE and txn.from_account_id in selected:
        moves.append((EXPENSE, txn.from_account_id))
    elif txn.type == TransactionType.TRANSFER:
        if txn.from_account_id in selected:
            moves.append((EXPENSE, txn.from_account_id))
        if txn.to_account_id in selected:
            moves.append((INCOME, txn.to_account_id))
    return moves


async def generate_movement_summary(
    db: AsyncSession,
    ctx: RequestContext,
    start_date: date,
    end_date: date,
    account_ids: list[int] | None = None,
    group_by: str = "month",
) -> dict:
    """
    Income, expense and net per period for the selected accounts.

    Args:
        db: Database session.
        ctx: Caller; every selected account must belong to its company.
        start_date / end_date: Inclusive date range.
        account_ids: Accounts to report on; all active company accounts
            when omitted.
        group_by: "day", "week" or "month".

    Returns:
        {"start_date", "end_date", "group_by", "account_ids",
         "periods": [{"period", "start", "end", "income", "expense",
                      "net", "entries": [...]}, ...],
         "totals": {"income", "expense", "net"}}

    Raises:
        InvalidGroupBy: If group_by is not one of day, week, month.
        InvalidDateRange: If start_date is after end_date.
        NotFoundError / AccessDenied: Unknown or foreign account.
    """
    if group_by not in GROUP_BY_OPTIONS:
        raise InvalidGroupBy(group_by, GROUP_BY_OPTIONS)
    if start_date > end_date:
        raise InvalidDateRange(start_date, end_date)

    if account_ids:
        accounts = [await account_service.get_account(db, ctx, account_id) for account_id in account_ids]
    else:
        accounts = await account_service.list_accounts(db, ctx, is_active=True)
    selected = {account.id for account in accounts}
    names = {account.id: account.name for account in accounts}

    result = await db.execute(
        select(FinancialTransaction)
        .where(FinancialTransaction.company_id == ctx.company_id)
        .where(FinancialTransaction.status == TransactionStatus.COMPLETED)
        .where(FinancialTransaction.date >= start_date)
        .where(FinancialTransaction.date <= end_date)
        .where(
            or_(
                FinancialTransaction.from_account_id.in_(selected),
                FinancialTransaction.to_account_id.in_(selected),
            )
        )
        .order_by(FinancialTransaction.date, FinancialTransaction.id)
    )

    periods: dict[str, dict] = {}
    for txn in result.scalars().all():
        key, first_day, last_day = period_bounds(txn.date, group_by)
        bucket = periods.setdefault(
            key,
            {
                "period": key,
                "start": first_day,
                "end": last_day,
                "income": money.ZERO,
                "expense": money.ZERO,
                "entries": [],
            },
        )
        for direction, account_id in _movements(txn, selected):
            side = "income" if direction == INCOME else "expense"
            bucket[side] = money.add(bucket[side], txn.amount)
            bucket["entries"].append(
                {
                    "transaction_id": txn.id,
                    "date": txn.date,
                    "description": txn.description,
                    "type": txn.type.value,
                    "direction": direction,
                    "account_id": account_id,
                    "account_name": names[account_id],
                    "amount": txn.amount,
                }
            )

    rows = [periods[key] for key in sorted(periods)]
    for row in rows:
        row["net"] = money.subtract(row["income"], row["expense"])

    income = money.add(*(row["income"] for row in rows))
    expense = money.add(*(row["expense"] for row in rows))

    logger.info(
        "Movement summary generated",
        extra={
            "company_id": ctx.company_id,
            "accounts": len(selected),
            "periods": len(rows),
            "group_by": group_by,
        },
    )
    return {
        "start_date": start_date,
        "end_date": end_date,
        "group_by": group_by,
        "account_ids": sorted(selected),
        "periods": rows,
        "totals": {"income": income, "expense": expense, "net": money.subtract(income, expense)},
    }
