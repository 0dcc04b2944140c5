"""
Pydantic schemas for FinancialTransaction endpoints.

Account/type consistency (INCOME -> to only, EXPENSE -> from only,
TRANSFER -> both, distinct) is enforced by the transaction service so
that updates, which merge with stored values, follow the same rule.
"""

import datetime as dt

from pydantic import BaseModel, Field

from ledger.models.transaction import TransactionStatus, TransactionType
from ledger.schemas.account import AccountResponse
from ledger.schemas.common import Money


class TransactionCreateRequest(BaseModel):
    """Request body for POST /financial/transactions."""
    description: str = Field(min_length=1, max_length=255)
    amount: Money
    date: dt.date
    type: TransactionType
    status: TransactionStatus = TransactionStatus.PENDING
    notes: str | None = None
    from_account_id: int | None = None
    to_account_id: int | None = None
    category_id: int | None = None
    tags: list[str] = Field(default_factory=list)


class TransactionUpdateRequest(BaseModel):
    """Request body for PUT /financial/transactions/{id}. Only sent fields change."""
    description: str | None = Field(None, min_length=1, max_length=255)
    amount: Money | None = None
    date: dt.date | None = None
    type: TransactionType | None = None
    status: TransactionStatus | None = None
    notes: str | None = None
    from_account_id: int | None = None
    to_account_id: int | None = None
    category_id: int | None = None
    tags: list[str] | None = None


class TransactionStatusRequest(BaseModel):
    status: TransactionStatus


class TransactionResponse(BaseModel):
    id: int
    company_id: int
    description: str
    amount: Money
    date: dt.date
    type: TransactionType
    status: TransactionStatus
    notes: str | None
    from_account_id: int | None
    to_account_id: int | None
    category_id: int | None
    tag_names: list[str]
    is_adjustment: bool
    created_by: int
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class TransactionPageResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    page: int
    page_size: int
    pages: int


class FinancialSummaryResponse(BaseModel):
    start_date: dt.date
    end_date: dt.date
    income: Money
    expense: Money
    net: Money
    accounts: list[AccountResponse]
