"""
Credit cards router — card configuration and limit tracking.

  GET    /financial/credit-cards                           — Company cards with configs
  POST   /financial/credit-cards/{account_id}/config       — [Admin] Configure a card
  GET    /financial/credit-cards/{account_id}/config       — Get the configuration
  PUT    /financial/credit-cards/{account_id}/config       — [Admin] Update it
  DELETE /financial/credit-cards/{account_id}/config       — [Admin] Remove it
  GET    /financial/credit-cards/{account_id}/available-limit
  GET    /financial/credit-cards/{account_id}/limit-alert
  GET    /financial/credit-cards/{account_id}/dates        — Next closing and due dates

Invoice, installment and payment endpoints live in their own routers
under the same prefix.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import UnitOfWork, get_db
from ledger.dependencies import get_request_context, get_unit_of_work, require_admin
from ledger.schemas.credit_card import (
    AvailableLimitResponse,
    CardDatesResponse,
    CreditCardConfigCreateRequest,
    CreditCardConfigResponse,
    CreditCardConfigUpdateRequest,
    CreditCardSummaryResponse,
    LimitAlertResponse,
)
from ledger.services import credit_card_service

router = APIRouter()


@router.get(
    "",
    response_model=list[CreditCardSummaryResponse],
    summary="List company credit cards",
)
async def list_cards(
    include_inactive: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    pairs = await credit_card_service.list_configs(db, ctx, include_inactive=include_inactive)
    return [
        {
            "account_id": account.id,
            "account_name": account.name,
            "balance": account.balance,
            "config": config,
        }
        for config, account in pairs
    ]


@router.post(
    "/{account_id}/config",
    response_model=CreditCardConfigResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Configure a credit card",
)
async def create_config(
    account_id: int,
    request: CreditCardConfigCreateRequest,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Attach limit, billing cycle and charges to a CREDIT_CARD account.
    The whole limit starts available.
    """
    return await uow.run(
        credit_card_service.create_config, ctx, account_id, **request.model_dump(exclude_unset=True)
    )


@router.get(
    "/{account_id}/config",
    response_model=CreditCardConfigResponse,
    summary="Get a card configuration",
)
async def get_config(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await credit_card_service.get_config(db, ctx, account_id)


@router.put(
    "/{account_id}/config",
    response_model=CreditCardConfigResponse,
    summary="[Admin] Update a card configuration",
)
async def update_config(
    account_id: int,
    request: CreditCardConfigUpdateRequest,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """Changing credit_limit recomputes the available limit; it can't drop below what is used."""
    return await uow.run(
        credit_card_service.update_config, ctx, account_id, **request.model_dump(exclude_unset=True)
    )


@router.delete(
    "/{account_id}/config",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a card configuration",
)
async def delete_config(
    account_id: int,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    await uow.run(credit_card_service.delete_config, ctx, account_id)


@router.get(
    "/{account_id}/available-limit",
    response_model=AvailableLimitResponse,
    summary="Get credit, used and available limit",
)
async def get_available_limit(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await credit_card_service.get_available_limit(db, ctx, account_id)


@router.get(
    "/{account_id}/limit-alert",
    response_model=LimitAlertResponse,
    summary="Check the limit usage alert",
)
async def check_limit_alert(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await credit_card_service.check_limit_alert(db, ctx, account_id)


@router.get(
    "/{account_id}/dates",
    response_model=CardDatesResponse,
    summary="Next closing and due dates",
)
async def get_card_dates(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "account_id": account_id,
        "next_closing_date": await credit_card_service.get_next_closing_date(db, ctx, account_id),
        "next_due_date": await credit_card_service.get_next_due_date(db, ctx, account_id),
    }
