"""
Invoices router — credit card invoice lifecycle.

  POST /financial/credit-cards/invoices/mark-overdue            — [Admin] Overdue sweep
  GET  /financial/credit-cards/invoices/{id}                    — Get an invoice
  GET  /financial/credit-cards/invoices/{id}/transactions       — Linked transactions
  POST /financial/credit-cards/invoices/{id}/recalculate        — Recompute totals
  POST /financial/credit-cards/invoices/{id}/close              — [Admin] OPEN -> CLOSED
  POST /financial/credit-cards/invoices/{id}/cancel             — [Admin] Cancel (no payments)
  POST /financial/credit-cards/invoices/{id}/interest           — [Admin] Charge interest
  POST /financial/credit-cards/invoices/{id}/fees               — [Admin] Charge the monthly fee
  POST /financial/credit-cards/{account_id}/invoices            — Generate a period's invoice
  GET  /financial/credit-cards/{account_id}/invoices            — List a card's invoices
  GET  /financial/credit-cards/{account_id}/invoices/current    — Oldest OPEN invoice
  GET  /financial/credit-cards/{account_id}/invoices/{year}/{month}

The /invoices/... routes are declared first so that "invoices" is never
read as an account id.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import UnitOfWork, get_db
from ledger.dependencies import get_request_context, get_unit_of_work, require_admin
from ledger.exceptions import NotFoundError
from ledger.models.credit_card import InvoiceStatus
from ledger.schemas.invoice import (
    InvoiceGenerateRequest,
    InvoiceResponse,
    InvoiceTransactionResponse,
    OverdueSweepResponse,
)
from ledger.services import invoice_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Invoice endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/invoices/mark-overdue",
    response_model=OverdueSweepResponse,
    summary="[Admin] Mark past-due invoices as overdue",
)
async def mark_overdue_invoices(
    today: date | None = Query(None, description="Reference date; defaults to today"),
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """Unpaid OPEN and CLOSED invoices whose due date has passed become OVERDUE."""
    invoices = await uow.run(invoice_service.mark_overdue_invoices, ctx, today)
    return {"marked": len(invoices), "invoices": invoices}


@router.get(
    "/invoices/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get an invoice",
)
async def get_invoice(
    invoice_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await invoice_service.get_invoice(db, ctx, invoice_id)


@router.get(
    "/invoices/{invoice_id}/transactions",
    response_model=list[InvoiceTransactionResponse],
    summary="List transactions on an invoice",
)
async def get_invoice_transactions(
    invoice_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await invoice_service.get_invoice_transactions(db, ctx, invoice_id)


@router.post(
    "/invoices/{invoice_id}/recalculate",
    response_model=InvoiceResponse,
    summary="Recalculate invoice totals",
)
async def recalculate_invoice(
    invoice_id: int,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(invoice_service.recalculate, ctx, invoice_id)


@router.post(
    "/invoices/{invoice_id}/close",
    response_model=InvoiceResponse,
    summary="[Admin] Close an invoice",
)
async def close_invoice(
    invoice_id: int,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(invoice_service.close_invoice, ctx, invoice_id)


@router.post(
    "/invoices/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    summary="[Admin] Cancel an invoice",
)
async def cancel_invoice(
    invoice_id: int,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(invoice_service.cancel_invoice, ctx, invoice_id)


@router.post(
    "/invoices/{invoice_id}/interest",
    response_model=InvoiceResponse,
    summary="[Admin] Charge interest on the carried balance",
)
async def apply_interest(
    invoice_id: int,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(invoice_service.apply_interest, ctx, invoice_id)


@router.post(
    "/invoices/{invoice_id}/fees",
    response_model=InvoiceResponse,
    summary="[Admin] Charge the monthly annual-fee installment",
)
async def apply_fees(
    invoice_id: int,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(invoice_service.apply_fees, ctx, invoice_id)


# ---------------------------------------------------------------------------
# Per-card endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/{account_id}/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate the invoice for a period",
)
async def generate_invoice(
    account_id: int,
    request: InvoiceGenerateRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(
        invoice_service.generate_invoice, ctx, account_id, request.reference_month, request.reference_year
    )


@router.get(
    "/{account_id}/invoices",
    response_model=list[InvoiceResponse],
    summary="List a card's invoices",
)
async def list_invoices(
    account_id: int,
    status: InvoiceStatus | None = Query(None),
    limit: int = Query(12, ge=1, le=120),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await invoice_service.list_invoices(
        db, ctx, account_id, status=status, limit=limit, offset=offset
    )


@router.get(
    "/{account_id}/invoices/current",
    response_model=InvoiceResponse,
    summary="Get the card's current (oldest OPEN) invoice",
)
async def get_current_invoice(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.get_current_invoice(db, ctx, account_id)
    if invoice is None:
        raise NotFoundError("Open invoice for account", account_id)
    return invoice


@router.get(
    "/{account_id}/invoices/{year}/{month}",
    response_model=InvoiceResponse,
    summary="Get a card's invoice for a period",
)
async def get_invoice_by_period(
    account_id: int,
    year: int,
    month: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.get_invoice_by_period(db, ctx, account_id, month, year)
    if invoice is None:
        raise NotFoundError("Invoice", f"{month:02d}/{year}")
    return invoice
