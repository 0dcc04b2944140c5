"""
Pydantic schemas for FinancialAccount endpoints.

Money fields accept strings or numbers and are returned as two-place
strings (see ledger/schemas/common.py).
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ledger.models.account import AccountType
from ledger.schemas.common import Money


class AccountCreateRequest(BaseModel):
    """Request body for POST /financial/accounts."""
    name: str = Field(min_length=1, max_length=120)
    type: AccountType = AccountType.CHECKING
    initial_balance: Money = Field(default="0.00", validate_default=True)
    account_number: str | None = Field(None, max_length=40)
    bank_name: str | None = Field(None, max_length=120)
    allow_negative_balance: bool = False
    is_default: bool = False


class AccountUpdateRequest(BaseModel):
    """Request body for PUT /financial/accounts/{id}. Only sent fields change."""
    name: str | None = Field(None, min_length=1, max_length=120)
    type: AccountType | None = None
    account_number: str | None = Field(None, max_length=40)
    bank_name: str | None = Field(None, max_length=120)
    is_active: bool | None = None
    is_default: bool | None = None
    allow_negative_balance: bool | None = None


class AccountResponse(BaseModel):
    id: int
    company_id: int
    name: str
    type: AccountType
    account_number: str | None
    bank_name: str | None
    initial_balance: Money
    balance: Money
    is_active: bool
    is_default: bool
    allow_negative_balance: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AccountBalanceResponse(BaseModel):
    """Stored balance next to the balance recomputed from COMPLETED transactions."""
    account_id: int
    balance: Money
    computed_balance: Money
    initial_balance: Money
    match: bool


class AdjustBalanceRequest(BaseModel):
    new_balance: Money
    reason: str | None = Field(None, max_length=255)


class NegativeBalanceRequest(BaseModel):
    allow: bool
