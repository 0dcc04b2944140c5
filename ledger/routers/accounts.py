"""
Accounts router — financial account management endpoints.

  POST   /financial/accounts                           — Create an account
  GET    /financial/accounts                           — List company accounts
  GET    /financial/accounts/default                   — Get the default account
  GET    /financial/accounts/{id}                      — Get one account
  PUT    /financial/accounts/{id}                      — Update attributes
  DELETE /financial/accounts/{id}                      — Delete (no transactions only)
  GET    /financial/accounts/{id}/balance              — Stored vs. recomputed balance
  POST   /financial/accounts/{id}/adjust-balance       — [Admin] Set balance via audit entry
  POST   /financial/accounts/{id}/set-default          — Make it the default
  DELETE /financial/accounts/{id}/set-default          — Clear the default flag
  POST   /financial/accounts/{id}/negative-balance     — [Admin] Allow/disallow negatives

Every endpoint is scoped to the company in the caller's token.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.context import RequestContext
from ledger.database import UnitOfWork, get_db
from ledger.dependencies import get_request_context, get_unit_of_work, require_admin
from ledger.exceptions import NotFoundError
from ledger.models.account import AccountType
from ledger.schemas.account import (
    AccountBalanceResponse,
    AccountCreateRequest,
    AccountResponse,
    AccountUpdateRequest,
    AdjustBalanceRequest,
    NegativeBalanceRequest,
)
from ledger.services import account_service

router = APIRouter()


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a financial account",
)
async def create_account(
    request: AccountCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Create an account for the caller's company.

    Only one active account per type is allowed (credit cards excepted),
    and names are unique within the company. Credit card accounts always
    allow negative balances.
    """
    return await uow.run(
        account_service.create_account,
        ctx,
        name=request.name,
        account_type=request.type,
        initial_balance=request.initial_balance,
        account_number=request.account_number,
        bank_name=request.bank_name,
        allow_negative_balance=request.allow_negative_balance,
        is_default=request.is_default,
    )


@router.get(
    "",
    response_model=list[AccountResponse],
    summary="List company accounts",
)
async def list_accounts(
    type: AccountType | None = Query(None, description="Filter by account type"),
    is_active: bool | None = Query(None),
    allow_negative_balance: bool | None = Query(None),
    search: str | None = Query(None, description="Match name, bank or account number"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await account_service.list_accounts(
        db,
        ctx,
        account_type=type,
        is_active=is_active,
        search=search,
        allow_negative_balance=allow_negative_balance,
    )


@router.get(
    "/default",
    response_model=AccountResponse,
    summary="Get the company's default account",
)
async def get_default_account(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    account = await account_service.get_default_account(db, ctx)
    if account is None:
        raise NotFoundError("Default account", ctx.company_id)
    return account


@router.get(
    "/{account_id}",
    response_model=AccountResponse,
    summary="Get an account",
)
async def get_account(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await account_service.get_account(db, ctx, account_id)


@router.put(
    "/{account_id}",
    response_model=AccountResponse,
    summary="Update an account",
)
async def update_account(
    account_id: int,
    request: AccountUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Update account attributes. Only fields present in the body change;
    the balance itself is changed through adjust-balance.
    """
    return await uow.run(
        account_service.update_account, ctx, account_id, **request.model_dump(exclude_unset=True)
    )


@router.delete(
    "/{account_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an account",
)
async def delete_account(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """Only accounts with no transactions can be deleted; deactivate the rest."""
    await uow.run(account_service.delete_account, ctx, account_id)


@router.get(
    "/{account_id}/balance",
    response_model=AccountBalanceResponse,
    summary="Get stored and recomputed balance",
)
async def get_balance(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await account_service.get_balance(db, ctx, account_id)


@router.post(
    "/{account_id}/adjust-balance",
    response_model=AccountResponse,
    summary="[Admin] Adjust an account balance",
)
async def adjust_balance(
    account_id: int,
    request: AdjustBalanceRequest,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """
    Set the balance to `new_balance`. The difference is recorded as a
    COMPLETED INCOME or EXPENSE so the ledger still reconciles.
    """
    return await uow.run(
        account_service.adjust_balance,
        ctx,
        account_id,
        new_balance=request.new_balance,
        reason=request.reason,
    )


@router.post(
    "/{account_id}/set-default",
    response_model=AccountResponse,
    summary="Make an account the company default",
)
async def set_default(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(account_service.set_default, ctx, account_id)


@router.delete(
    "/{account_id}/set-default",
    response_model=AccountResponse,
    summary="Clear the default flag",
)
async def unset_default(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(account_service.unset_default, ctx, account_id)


@router.post(
    "/{account_id}/negative-balance",
    response_model=AccountResponse,
    summary="[Admin] Allow or disallow negative balances",
)
async def toggle_negative_balance(
    account_id: int,
    request: NegativeBalanceRequest,
    ctx: RequestContext = Depends(require_admin),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    return await uow.run(account_service.toggle_negative_balance, ctx, account_id, allow=request.allow)
