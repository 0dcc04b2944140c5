"""
Credit card service — card configuration and the limit tracker.

Every CREDIT_CARD account has one CreditCardConfig holding its limit and
billing cycle. The limit is tracked as

    used_limit + available_limit == credit_limit,   used_limit >= 0

and all three columns are rewritten together by update_used_limit(), so
the invariant can't drift. The config row is read FOR UPDATE whenever the
limit changes (no-op on SQLite, row lock on PostgreSQL).

The billing-cycle helpers (clamp_day, add_months, period_for) are plain
functions: the invoice and installment services build their dates from
them so closing and due dates are computed the same way everywhere.
"""

import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import money
from ledger.config import settings
from ledger.context import RequestContext
from ledger.database import atomic
from ledger.exceptions import (
    CreditCardConfigExists,
    InsufficientCreditLimit,
    InvalidCreditCardConfig,
    NotFoundError,
)
from ledger.models.account import AccountType, FinancialAccount
from ledger.models.credit_card import CreditCardConfig
from ledger.services import account_service

logger = logging.getLogger(__name__)

ADD = "add"
SUBTRACT = "subtract"


# ---------------------------------------------------------------------------
# Billing-cycle date helpers
# ---------------------------------------------------------------------------

def clamp_day(year: int, month: int, day: int) -> date:
    """Day `day` of the month, or the month's last day if it is shorter."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def add_months(value: date, months: int, day: int | None = None) -> date:
    """Shift a date by whole months, clamping the day to the target month."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    return clamp_day(year, month + 1, day or value.day)


def period_for(on_date: date, closing_day: int) -> tuple[int, int]:
    """
    (month, year) of the invoice a purchase on `on_date` belongs to.

    Purchases before the closing day fall in the current month's invoice,
    purchases on or after it roll into the next month's.
    """
    closing = clamp_day(on_date.year, on_date.month, closing_day)
    if on_date < closing:
        return on_date.month, on_date.year
    shifted = add_months(date(on_date.year, on_date.month, 1), 1)
    return shifted.month, shifted.year


def next_period(month: int, year: int) -> tuple[int, int]:
    shifted = add_months(date(year, month, 1), 1)
    return shifted.month, shifted.year


def closing_date_for(config: CreditCardConfig, month: int, year: int) -> date:
    return clamp_day(year, month, config.closing_day)


def due_date_for(config: CreditCardConfig, month: int, year: int) -> date:
    return closing_date_for(config, month, year) + timedelta(days=config.due_days_after_closing)


def _next_occurrence(day_of_month: int, today: date) -> date:
    this_month = clamp_day(today.year, today.month, day_of_month)
    if today < this_month:
        return this_month
    return add_months(date(today.year, today.month, 1), 1, day=day_of_month)


def _default_due_day(closing_day: int, due_days_after_closing: int) -> int:
    due_day = closing_day + due_days_after_closing
    if due_day > 31:
        due_day -= 31
    return due_day


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

async def _find_config(
    db: AsyncSession,
    account_id: int,
    lock: bool = False,
) -> CreditCardConfig | None:
    query = select(CreditCardConfig).where(CreditCardConfig.financial_account_id == account_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def require_config(db: AsyncSession, account_id: int, lock: bool = False) -> CreditCardConfig:
    """Internal lookup without company check; callers have already authorized the account."""
    config = await _find_config(db, account_id, lock=lock)
    if config is None:
        raise NotFoundError("CreditCardConfig", account_id)
    return config


async def get_config(db: AsyncSession, ctx: RequestContext, account_id: int) -> CreditCardConfig:
    await account_service.get_account(db, ctx, account_id)
    return await require_config(db, account_id)


def _validate_day(field: str, value: int) -> None:
    if not 1 <= value <= 31:
        raise InvalidCreditCardConfig(f"{field} must be between 1 and 31")


def _parse_percent(field: str, value) -> Decimal:
    percent = money.parse(value)
    if percent < 0 or percent > money.HUNDRED:
        raise InvalidCreditCardConfig(f"{field} must be between 0 and 100")
    return percent


def _optional_money(value) -> Decimal | None:
    return None if value is None else money.parse(value)


async def create_config(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    credit_limit,
    closing_day: int,
    due_day: int | None = None,
    due_days_after_closing: int | None = None,
    annual_fee=None,
    annual_fee_monthly_charge=None,
    interest_rate=None,
    late_payment_fee=None,
    minimum_payment_percent=None,
    alert_limit_percent=None,
    enable_limit_alerts: bool = True,
    enable_due_alerts: bool = True,
    due_days_before_alert: int = 3,
) -> CreditCardConfig:
    """
    Attach a credit card configuration to a CREDIT_CARD account.

    The whole limit starts available. When due_day is omitted it is
    closing_day + due_days_after_closing, wrapped past day 31.

    Raises:
        InvalidCreditCardConfig: Wrong account type, non-positive limit,
            or a day outside 1..31.
        CreditCardConfigExists: If the account already has a config.
    """
    account = await account_service.get_account(db, ctx, account_id, lock=True)
    if account.type != AccountType.CREDIT_CARD:
        raise InvalidCreditCardConfig(f"Account {account_id} is not a credit card account")

    if await _find_config(db, account_id) is not None:
        raise CreditCardConfigExists(account_id)

    limit = money.parse(credit_limit)
    if limit <= 0:
        raise InvalidCreditCardConfig("credit_limit must be greater than zero")

    if due_days_after_closing is None:
        due_days_after_closing = settings.DEFAULT_DUE_DAYS_AFTER_CLOSING
    _validate_day("closing_day", closing_day)
    if due_day is None:
        due_day = _default_due_day(closing_day, due_days_after_closing)
    _validate_day("due_day", due_day)

    config = CreditCardConfig(
        financial_account_id=account.id,
        credit_limit=limit,
        used_limit=money.ZERO,
        available_limit=limit,
        closing_day=closing_day,
        due_day=due_day,
        due_days_after_closing=due_days_after_closing,
        annual_fee=_optional_money(annual_fee),
        annual_fee_monthly_charge=_optional_money(annual_fee_monthly_charge),
        interest_rate=_optional_money(interest_rate),
        late_payment_fee=_optional_money(late_payment_fee),
        minimum_payment_percent=_parse_percent(
            "minimum_payment_percent",
            minimum_payment_percent
            if minimum_payment_percent is not None
            else settings.DEFAULT_MINIMUM_PAYMENT_PERCENT,
        ),
        alert_limit_percent=_parse_percent(
            "alert_limit_percent",
            alert_limit_percent if alert_limit_percent is not None else settings.DEFAULT_ALERT_LIMIT_PERCENT,
        ),
        enable_limit_alerts=enable_limit_alerts,
        enable_due_alerts=enable_due_alerts,
        due_days_before_alert=due_days_before_alert,
        is_active=True,
    )
    db.add(config)
    await db.flush()

    logger.info(
        "Credit card configured",
        extra={
            "account_id": account.id,
            "credit_limit": money.to_str(limit),
            "closing_day": closing_day,
            "due_day": due_day,
        },
    )
    return config


_NULLABLE_MONEY_FIELDS = ("annual_fee", "annual_fee_monthly_charge", "interest_rate", "late_payment_fee")
_PLAIN_FIELDS = (
    "due_days_after_closing",
    "enable_limit_alerts",
    "enable_due_alerts",
    "due_days_before_alert",
    "is_active",
)


async def update_config(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    **fields,
) -> CreditCardConfig:
    """
    Update a card configuration.

    Changing credit_limit recomputes available_limit from the current
    used_limit. A limit below what is already used is rejected.
    """
    await account_service.get_account(db, ctx, account_id)
    config = await require_config(db, account_id, lock=True)

    async with atomic(db):
        if fields.get("credit_limit") is not None:
            limit = money.parse(fields["credit_limit"])
            if limit <= 0:
                raise InvalidCreditCardConfig("credit_limit must be greater than zero")
            if limit < config.used_limit:
                raise InvalidCreditCardConfig(
                    f"credit_limit {limit:.2f} is below the used limit {config.used_limit:.2f}"
                )
            logger.info(
                "Credit limit updated",
                extra={
                    "account_id": account_id,
                    "previous_limit": money.to_str(config.credit_limit),
                    "new_limit": money.to_str(limit),
                },
            )
            config.credit_limit = limit
            config.available_limit = money.subtract(limit, config.used_limit)

        for field in ("closing_day", "due_day"):
            if fields.get(field) is not None:
                _validate_day(field, fields[field])
                setattr(config, field, fields[field])

        for field in _NULLABLE_MONEY_FIELDS:
            if field in fields:
                setattr(config, field, _optional_money(fields[field]))

        for field in ("minimum_payment_percent", "alert_limit_percent"):
            if fields.get(field) is not None:
                setattr(config, field, _parse_percent(field, fields[field]))

        for field in _PLAIN_FIELDS:
            if fields.get(field) is not None:
                setattr(config, field, fields[field])

        await db.flush()

    return config


async def delete_config(db: AsyncSession, ctx: RequestContext, account_id: int) -> None:
    await account_service.get_account(db, ctx, account_id)
    config = await require_config(db, account_id, lock=True)
    await db.delete(config)
    await db.flush()
    logger.info("Credit card configuration deleted", extra={"account_id": account_id})


async def list_configs(
    db: AsyncSession,
    ctx: RequestContext,
    include_inactive: bool = False,
) -> list[tuple[CreditCardConfig, FinancialAccount]]:
    """Company cards with their accounts, ordered by account name."""
    query = (
        select(CreditCardConfig, FinancialAccount)
        .join(FinancialAccount, FinancialAccount.id == CreditCardConfig.financial_account_id)
        .where(FinancialAccount.company_id == ctx.company_id)
        .order_by(FinancialAccount.name)
    )
    if not include_inactive:
        query = query.where(CreditCardConfig.is_active.is_(True)).where(
            FinancialAccount.is_active.is_(True)
        )
    result = await db.execute(query)
    return [(config, account) for config, account in result.all()]


# ---------------------------------------------------------------------------
# Limit tracker
# ---------------------------------------------------------------------------

async def update_used_limit(db: AsyncSession, account_id: int, amount, op: str) -> CreditCardConfig:
    """
    Add to or subtract from the used limit.

    Subtracting never takes used_limit below zero; available_limit is
    always rewritten as credit_limit - used_limit.
    """
    if op not in (ADD, SUBTRACT):
        raise ValueError(f"Unknown limit operation: {op!r}")

    value = money.parse(amount)
    config = await require_config(db, account_id, lock=True)

    if op == ADD:
        used = money.add(config.used_limit, value)
    else:
        used = max(money.subtract(config.used_limit, value), money.ZERO)

    config.used_limit = used
    config.available_limit = money.subtract(config.credit_limit, used)
    await db.flush()
    return config


async def check_limit_available(db: AsyncSession, account_id: int, amount) -> bool:
    config = await require_config(db, account_id)
    return config.available_limit >= money.parse(amount)


async def reserve_limit(db: AsyncSession, account_id: int, amount) -> CreditCardConfig:
    """
    Check and consume limit in one locked step.

    Raises:
        InsufficientCreditLimit: If the amount exceeds the available limit.
    """
    value = money.parse(amount)
    config = await require_config(db, account_id, lock=True)
    if config.available_limit < value:
        raise InsufficientCreditLimit(account_id, value, config.available_limit)
    return await update_used_limit(db, account_id, value, ADD)


async def release_limit(db: AsyncSession, account_id: int, amount) -> CreditCardConfig:
    return await update_used_limit(db, account_id, amount, SUBTRACT)


async def get_available_limit(db: AsyncSession, ctx: RequestContext, account_id: int) -> dict:
    config = await get_config(db, ctx, account_id)
    return {
        "account_id": account_id,
        "credit_limit": config.credit_limit,
        "used_limit": config.used_limit,
        "available_limit": config.available_limit,
    }


async def check_limit_alert(db: AsyncSession, ctx: RequestContext, account_id: int) -> dict:
    """
    Compare the used share of the limit against the alert threshold.

    should_alert is only ever true when limit alerts are enabled.
    """
    config = await get_config(db, ctx, account_id)

    if config.credit_limit == 0:
        percentage = money.ZERO
    else:
        percentage = money.round2(config.used_limit / config.credit_limit * money.HUNDRED)

    return {
        "account_id": account_id,
        "should_alert": config.enable_limit_alerts and percentage >= config.alert_limit_percent,
        "percentage": percentage,
        "alert_limit_percent": config.alert_limit_percent,
        "used_limit": config.used_limit,
        "available_limit": config.available_limit,
        "credit_limit": config.credit_limit,
    }


async def get_next_closing_date(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    today: date | None = None,
) -> date:
    config = await get_config(db, ctx, account_id)
    return _next_occurrence(config.closing_day, today or date.today())


async def get_next_due_date(
    db: AsyncSession,
    ctx: RequestContext,
    account_id: int,
    today: date | None = None,
) -> date:
    config = await get_config(db, ctx, account_id)
    return _next_occurrence(config.due_day, today or date.today())
