"""
Installments router — card purchases split across invoices.

  GET    /financial/credit-cards/installments/{id}              — Purchase with its shares
  GET    /financial/credit-cards/installments/{id}/remaining    — Unpaid count and amount
  DELETE /financial/credit-cards/installments/{id}              — Cancel the unbilled shares
  POST   /financial/credit-cards/{account_id}/installments      — Create a purchase
  GET    /financial/credit-cards/{account_id}/installments      — List a card's purchases
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import UnitOfWork, get_db
from ledger.dependencies import get_request_context, get_unit_of_work
from ledger.schemas.installment import (
    InstallmentCreateRequest,
    InstallmentDetailResponse,
    InstallmentRemainingResponse,
    InstallmentResponse,
)
from ledger.services import installment_service

router = APIRouter()


@router.get(
    "/installments/{installment_id}",
    response_model=InstallmentDetailResponse,
    summary="Get an installment purchase",
)
async def get_installment(
    installment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await installment_service.get_installment_detail(db, ctx, installment_id)


@router.get(
    "/installments/{installment_id}/remaining",
    response_model=InstallmentRemainingResponse,
    summary="Unpaid installments of a purchase",
)
async def get_remaining(
    installment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await installment_service.get_remaining(db, ctx, installment_id)


@router.delete(
    "/installments/{installment_id}",
    response_model=InstallmentResponse,
    summary="Cancel an installment purchase",
)
async def cancel_installment(
    installment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Cancels the unpaid shares still sitting on OPEN invoices and releases
    their limit. Shares already billed on a closed invoice stay.
    """
    return await uow.run(installment_service.cancel_installment, ctx, installment_id)


@router.post(
    "/{account_id}/installments",
    response_model=InstallmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an installment purchase",
)
async def create_installment(
    account_id: int,
    request: InstallmentCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Split a purchase into N monthly shares, one per invoice starting with
    the invoice of the purchase date. The last share absorbs the rounding
    remainder, and the whole total is reserved against the limit.
    """
    return await uow.run(
        installment_service.create_installment_purchase,
        ctx,
        account_id,
        description=request.description,
        total_amount=request.total_amount,
        number_of_installments=request.number_of_installments,
        purchase_date=request.purchase_date,
        category_id=request.category_id,
    )


@router.get(
    "/{account_id}/installments",
    response_model=list[InstallmentResponse],
    summary="List a card's installment purchases",
)
async def list_installments(
    account_id: int,
    active_only: bool = Query(False, description="Only purchases with unpaid shares"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await installment_service.list_installments(db, ctx, account_id, active_only=active_only)
