"""
Pydantic schemas for credit card configuration and limit endpoints.
"""

import datetime as dt

from pydantic import BaseModel, Field

from ledger.schemas.common import Money


class CreditCardConfigCreateRequest(BaseModel):
    """
    Request body for POST /financial/credit-cards/{account_id}/config.

    due_day defaults to closing_day + due_days_after_closing (wrapped past
    day 31); percentages default to the configured ledger defaults.
    """
    credit_limit: Money
    closing_day: int = Field(ge=1, le=31)
    due_day: int | None = Field(None, ge=1, le=31)
    due_days_after_closing: int | None = Field(None, ge=0, le=60)
    annual_fee: Money | None = None
    annual_fee_monthly_charge: Money | None = None
    interest_rate: Money | None = None
    late_payment_fee: Money | None = None
    minimum_payment_percent: Money | None = None
    alert_limit_percent: Money | None = None
    enable_limit_alerts: bool = True
    enable_due_alerts: bool = True
    due_days_before_alert: int = Field(3, ge=0, le=31)


class CreditCardConfigUpdateRequest(BaseModel):
    credit_limit: Money | None = None
    closing_day: int | None = Field(None, ge=1, le=31)
    due_day: int | None = Field(None, ge=1, le=31)
    due_days_after_closing: int | None = Field(None, ge=0, le=60)
    annual_fee: Money | None = None
    annual_fee_monthly_charge: Money | None = None
    interest_rate: Money | None = None
    late_payment_fee: Money | None = None
    minimum_payment_percent: Money | None = None
    alert_limit_percent: Money | None = None
    enable_limit_alerts: bool | None = None
    enable_due_alerts: bool | None = None
    due_days_before_alert: int | None = Field(None, ge=0, le=31)
    is_active: bool | None = None


class CreditCardConfigResponse(BaseModel):
    id: int
    financial_account_id: int
    credit_limit: Money
    used_limit: Money
    available_limit: Money
    closing_day: int
    due_day: int
    due_days_after_closing: int
    annual_fee: Money | None
    annual_fee_monthly_charge: Money | None
    interest_rate: Money | None
    late_payment_fee: Money | None
    minimum_payment_percent: Money
    alert_limit_percent: Money
    enable_limit_alerts: bool
    enable_due_alerts: bool
    due_days_before_alert: int
    is_active: bool
    last_invoice_generated_at: dt.datetime | None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class CreditCardSummaryResponse(BaseModel):
    """One row of GET /financial/credit-cards."""
    account_id: int
    account_name: str
    balance: Money
    config: CreditCardConfigResponse


class AvailableLimitResponse(BaseModel):
    account_id: int
    credit_limit: Money
    used_limit: Money
    available_limit: Money


class LimitAlertResponse(BaseModel):
    account_id: int
    should_alert: bool
    percentage: Money
    alert_limit_percent: Money
    used_limit: Money
    available_limit: Money
    credit_limit: Money


class CardDatesResponse(BaseModel):
    account_id: int
    next_closing_date: dt.date
    next_due_date: dt.date
