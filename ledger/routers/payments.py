"""
Payments router — paying credit card invoices.

  POST /financial/credit-cards/invoices/{id}/pay-full       — Pay what remains
  POST /financial/credit-cards/invoices/{id}/pay-minimum    — Pay the minimum
  POST /financial/credit-cards/invoices/{id}/pay-partial    — Pay a chosen amount
  GET  /financial/credit-cards/invoices/{id}/payments       — Payments of an invoice
  GET  /financial/credit-cards/payments/summary             — Company totals for a period
  GET  /financial/credit-cards/{account_id}/payments        — Payment history of a card

Each payment posts a COMPLETED TRANSFER from the paying account (the
company default when omitted) into the card account.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import UnitOfWork, get_db
from ledger.dependencies import get_request_context, get_unit_of_work
from ledger.schemas.payment import (
    PartialPaymentRequest,
    PaymentRequest,
    PaymentResponse,
    PaymentSummaryResponse,
)
from ledger.services import payment_service

router = APIRouter()


@router.post(
    "/invoices/{invoice_id}/pay-full",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay an invoice in full",
)
async def pay_full(
    invoice_id: int,
    request: PaymentRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(
        payment_service.pay_invoice_full,
        ctx,
        invoice_id,
        from_account_id=request.from_account_id,
        payment_date=request.payment_date,
        notes=request.notes,
    )


@router.post(
    "/invoices/{invoice_id}/pay-minimum",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay the minimum payment",
)
async def pay_minimum(
    invoice_id: int,
    request: PaymentRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(
        payment_service.pay_invoice_minimum,
        ctx,
        invoice_id,
        from_account_id=request.from_account_id,
        payment_date=request.payment_date,
        notes=request.notes,
    )


@router.post(
    "/invoices/{invoice_id}/pay-partial",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay part of an invoice",
)
async def pay_partial(
    invoice_id: int,
    request: PartialPaymentRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """The amount must be at least the minimum payment and at most what remains."""
    return await uow.run(
        payment_service.pay_invoice_partial,
        ctx,
        invoice_id,
        request.amount,
        from_account_id=request.from_account_id,
        payment_date=request.payment_date,
        notes=request.notes,
    )


@router.get(
    "/invoices/{invoice_id}/payments",
    response_model=list[PaymentResponse],
    summary="List payments of an invoice",
)
async def get_invoice_payments(
    invoice_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.get_invoice_payments(db, ctx, invoice_id)


@router.get(
    "/payments/summary",
    response_model=PaymentSummaryResponse,
    summary="Card payments summary for a period",
)
async def get_payment_summary(
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.get_payment_summary(db, ctx, start_date, end_date)


@router.get(
    "/{account_id}/payments",
    response_model=list[PaymentResponse],
    summary="Payment history of a card",
)
async def get_payment_history(
    account_id: int,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.get_payment_history(
        db, ctx, account_id, start_date=start_date, end_date=end_date, limit=limit
    )
