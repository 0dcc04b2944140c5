"""
Pydantic schemas for credit card invoice endpoints.
"""

import datetime as dt

from pydantic import BaseModel, Field

from ledger.models.credit_card import InvoiceStatus
from ledger.schemas.common import Money
from ledger.schemas.transaction import TransactionResponse


class InvoiceGenerateRequest(BaseModel):
    """Request body for POST /financial/credit-cards/{account_id}/invoices."""
    reference_month: int = Field(ge=1, le=12)
    reference_year: int = Field(ge=2000, le=2100)


class InvoiceResponse(BaseModel):
    id: int
    financial_account_id: int
    company_id: int
    reference_month: int
    reference_year: int
    closing_date: dt.date
    due_date: dt.date
    previous_balance: Money
    purchases_amount: Money
    payments_amount: Money
    interest_amount: Money
    fees_amount: Money
    total_amount: Money
    minimum_payment: Money
    paid_amount: Money
    remaining_amount: Money
    is_paid: bool
    is_overdue: bool
    status: InvoiceStatus
    closed_at: dt.datetime | None
    paid_at: dt.datetime | None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class InvoiceTransactionResponse(BaseModel):
    transaction: TransactionResponse
    is_installment: bool
    installment_id: int | None


class OverdueSweepResponse(BaseModel):
    marked: int
    invoices: list[InvoiceResponse]
