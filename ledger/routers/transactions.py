"""
Transactions router — ledger entries for the caller's company.

  POST   /financial/transactions               — Record a transaction
  GET    /financial/transactions               — Filtered, paginated list
  GET    /financial/transactions/summary       — Income / expense / net for a period
  GET    /financial/transactions/{id}          — Get one transaction
  PUT    /financial/transactions/{id}          — Edit (reposts when money moves)
  PATCH  /financial/transactions/{id}/status   — Move through the status machine
  DELETE /financial/transactions/{id}          — Delete, reversing its effect

/summary is declared before /{transaction_id} so the static path wins.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import UnitOfWork, get_db
from ledger.dependencies import get_request_context, get_unit_of_work
from ledger.models.transaction import TransactionStatus, TransactionType
from ledger.schemas.transaction import (
    FinancialSummaryResponse,
    TransactionCreateRequest,
    TransactionPageResponse,
    TransactionResponse,
    TransactionStatusRequest,
    TransactionUpdateRequest,
)
from ledger.services import transaction_service

router = APIRouter()


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a transaction",
)
async def create_transaction(
    request: TransactionCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Record an INCOME (to_account only), EXPENSE (from_account only) or
    TRANSFER (both). A COMPLETED transaction moves balances immediately;
    a PENDING one waits for PATCH /status.

    Amounts are decimal strings or numbers, e.g. "150.75".
    """
    return await uow.run(
        transaction_service.create_transaction,
        ctx,
        description=request.description,
        amount=request.amount,
        txn_date=request.date,
        txn_type=request.type,
        status=request.status,
        notes=request.notes,
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        category_id=request.category_id,
        tags=request.tags,
    )


@router.get(
    "",
    response_model=TransactionPageResponse,
    summary="List transactions",
)
async def list_transactions(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    type: TransactionType | None = Query(None),
    status: TransactionStatus | None = Query(None),
    account_id: int | None = Query(None, description="Either side of the transaction"),
    category_id: int | None = Query(None),
    search: str | None = Query(None, description="Match description or notes"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    items, total, pages = await transaction_service.list_transactions(
        db,
        ctx,
        start_date=start_date,
        end_date=end_date,
        txn_type=type,
        status=status,
        account_id=account_id,
        category_id=category_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size, "pages": pages}


@router.get(
    "/summary",
    response_model=FinancialSummaryResponse,
    summary="Financial summary for a period",
)
async def get_financial_summary(
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await transaction_service.get_financial_summary(db, ctx, start_date, end_date)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a transaction",
)
async def get_transaction(
    transaction_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await transaction_service.get_transaction(db, ctx, transaction_id)


@router.put(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Edit a transaction",
)
async def update_transaction(
    transaction_id: int,
    request: TransactionUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Only fields present in the body change. If the transaction is
    COMPLETED and the amount, date, type or accounts change, the old
    effect is reversed and the new one applied atomically.
    """
    return await uow.run(
        transaction_service.update_transaction, ctx, transaction_id, **request.model_dump(exclude_unset=True)
    )


@router.patch(
    "/{transaction_id}/status",
    response_model=TransactionResponse,
    summary="Change a transaction's status",
)
async def update_status(
    transaction_id: int,
    request: TransactionStatusRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """PENDING -> COMPLETED, PENDING -> CANCELED or COMPLETED -> CANCELED."""
    return await uow.run(transaction_service.update_status, ctx, transaction_id, request.status)


@router.delete(
    "/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a transaction",
)
async def delete_transaction(
    transaction_id: int,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    await uow.run(transaction_service.delete_transaction, ctx, transaction_id)
