"""
Pydantic schemas for invoice payment endpoints.
"""

import datetime as dt

from pydantic import BaseModel, Field

from ledger.models.credit_card import PaymentType
from ledger.schemas.common import Money


class PaymentRequest(BaseModel):
    """
    Request body for pay-full and pay-minimum.

    from_account_id defaults to the company's default account.
    """
    from_account_id: int | None = None
    payment_date: dt.date | None = None
    notes: str | None = Field(None, max_length=500)


class PartialPaymentRequest(PaymentRequest):
    amount: Money


class PaymentResponse(BaseModel):
    id: int
    invoice_id: int
    transaction_id: int
    amount: Money
    payment_type: PaymentType
    payment_date: dt.date
    notes: str | None
    created_by: int
    created_at: dt.datetime

    model_config = {"from_attributes": True}


class PaymentAccountTotal(BaseModel):
    account_id: int
    account_name: str
    total: Money
    count: int


class PaymentSummaryResponse(BaseModel):
    start_date: dt.date
    end_date: dt.date
    total_paid: Money
    payment_count: int
    by_type: dict[PaymentType, Money]
    by_account: list[PaymentAccountTotal]
