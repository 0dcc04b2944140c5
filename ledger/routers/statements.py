"""
Statements router — account movement summaries.

  GET /financial/statements/movement — Income, expense and net per period

Example:
  GET /financial/statements/movement?start_date=2026-01-01&end_date=2026-03-31
      &account_ids=1&account_ids=2&group_by=week
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import get_db
from ledger.dependencies import get_request_context
from ledger.schemas.statement import MovementSummaryResponse
from ledger.services import statement_service

router = APIRouter()


@router.get(
    "/movement",
    response_model=MovementSummaryResponse,
    summary="Account movement summary",
)
async def get_movement_summary(
    start_date: date = Query(...),
    end_date: date = Query(...),
    account_ids: list[int] | None = Query(None, description="Defaults to all active accounts"),
    group_by: str = Query("month", description="day, week or month"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await statement_service.generate_movement_summary(
        db, ctx, start_date, end_date, account_ids=account_ids, group_by=group_by
    )
