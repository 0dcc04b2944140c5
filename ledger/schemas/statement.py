"""
Pydantic schemas for the movement summary endpoint.
"""

import datetime as dt
from typing import Literal

from pydantic import BaseModel

from ledger.models.transaction import TransactionType
from ledger.schemas.common import Money


class MovementEntry(BaseModel):
    transaction_id: int
    date: dt.date
    description: str
    type: TransactionType
    direction: Literal["INCOME", "EXPENSE"]
    account_id: int
    account_name: str
    amount: Money


class MovementPeriod(BaseModel):
    period: str
    start: dt.date
    end: dt.date
    income: Money
    expense: Money
    net: Money
    entries: list[MovementEntry]


class MovementTotals(BaseModel):
    income: Money
    expense: Money
    net: Money


class MovementSummaryResponse(BaseModel):
    start_date: dt.date
    end_date: dt.date
    group_by: str
    account_ids: list[int]
    periods: list[MovementPeriod]
    totals: MovementTotals
