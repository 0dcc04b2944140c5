"""
Pydantic schemas for installment purchase endpoints.
"""

import datetime as dt

from pydantic import BaseModel, Field

from ledger.schemas.common import Money


class InstallmentCreateRequest(BaseModel):
    """
    Request body for POST /financial/credit-cards/{account_id}/installments.

    The count bounds are re-checked by the service against
    MIN_INSTALLMENTS / MAX_INSTALLMENTS.
    """
    description: str = Field(min_length=1, max_length=255)
    total_amount: Money
    number_of_installments: int = Field(ge=1)
    purchase_date: dt.date
    category_id: int | None = None


class InstallmentResponse(BaseModel):
    id: int
    financial_account_id: int
    company_id: int
    description: str
    total_amount: Money
    number_of_installments: int
    installment_amount: Money
    purchase_date: dt.date
    first_due_date: dt.date
    category_id: int | None
    created_by: int
    is_canceled: bool
    created_at: dt.datetime

    model_config = {"from_attributes": True}


class InstallmentShareResponse(BaseModel):
    id: int
    installment_id: int
    invoice_id: int
    transaction_id: int
    installment_number: int
    amount: Money
    due_date: dt.date
    is_paid: bool
    is_canceled: bool
    paid_at: dt.datetime | None

    model_config = {"from_attributes": True}


class InstallmentDetailResponse(BaseModel):
    installment: InstallmentResponse
    shares: list[InstallmentShareResponse]
    remaining_installments: int
    remaining_amount: Money


class InstallmentRemainingResponse(BaseModel):
    installment_id: int
    remaining_installments: int
    remaining_amount: Money
