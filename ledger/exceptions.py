"""
Domain exception classes and the FastAPI exception handler.

The service layer raises these domain errors without importing HTTP
concepts; the handler registered here translates them into responses of
the form {"detail": "...", "error_type": "...", ...extra}.

Exception hierarchy:
    LedgerError (base)
    ├── validation   — InvalidAmount, DivisionByZero, InconsistentAccountsForType,
    │                  InvalidDateRange, InvalidGroupBy, BelowMinimumPayment,
    │                  AboveTotalAmount, InvalidInstallmentCount,
    │                  InvalidCreditCardConfig, InvalidStatusTransition
    ├── state        — InvoiceNotOpen, InvoiceAlreadyPaid, InvoiceAlreadyExists,
    │                  InvoiceNotPayable, InvoiceHasPayments, TransactionLocked,
    │                  AccountInactive,
    │                  DuplicateAccountName, ActiveAccountExists,
    │                  CreditCardConfigExists
    ├── invariant    — NegativeBalanceNotAllowed, NegativeBalancePresent,
    │                  CreditCardRequiresNegative, InsufficientCreditLimit
    └── resource     — NotFoundError, HasTransactions, AccessDenied
"""

import logging
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class LedgerError(Exception):
    """Base exception for all ledger domain errors."""

    status_code: int = 400
    error_type: str = "ledger_error"

    def __init__(self, detail: str = "An error occurred", **extra):
        self.detail = detail
        self.extra = extra
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------

class ValidationError(LedgerError):
    status_code = 422
    error_type = "validation_error"


class InvalidAmount(ValidationError):
    error_type = "invalid_amount"

    def __init__(self, value):
        super().__init__(f"Invalid monetary amount: {value!r}")


class DivisionByZero(ValidationError):
    error_type = "division_by_zero"

    def __init__(self):
        super().__init__("Division by zero is not allowed")


class InconsistentAccountsForType(ValidationError):
    """Raised when the account pair does not match the transaction type."""

    error_type = "inconsistent_accounts_for_type"


class InvalidDateRange(ValidationError):
    error_type = "invalid_date_range"

    def __init__(self, start, end):
        super().__init__(f"Start date {start} is after end date {end}")


class InvalidGroupBy(ValidationError):
    error_type = "invalid_group_by"

    def __init__(self, group_by: str, allowed: tuple[str, ...]):
        super().__init__(
            f"Invalid group_by {group_by!r}; expected one of {', '.join(allowed)}"
        )


class BelowMinimumPayment(ValidationError):
    error_type = "below_minimum_payment"

    def __init__(self, amount: Decimal, minimum: Decimal):
        super().__init__(
            f"Payment amount ({amount:.2f}) is below the minimum payment ({minimum:.2f})",
            amount=f"{amount:.2f}",
            minimum_payment=f"{minimum:.2f}",
        )


class AboveTotalAmount(ValidationError):
    error_type = "above_total_amount"

    def __init__(self, amount: Decimal, total: Decimal):
        super().__init__(
            f"Payment amount ({amount:.2f}) is above the amount due ({total:.2f})",
            amount=f"{amount:.2f}",
            total_amount=f"{total:.2f}",
        )


class InvalidInstallmentCount(ValidationError):
    error_type = "invalid_installment_count"

    def __init__(self, count: int, minimum: int, maximum: int):
        super().__init__(
            f"Number of installments must be between {minimum} and {maximum}, got {count}"
        )


class InvalidCreditCardConfig(ValidationError):
    error_type = "invalid_credit_card_config"


class InvalidStatusTransition(ValidationError):
    error_type = "invalid_status_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move a transaction from {current} to {target}")


# ---------------------------------------------------------------------------
# State errors
# ---------------------------------------------------------------------------

class StateError(LedgerError):
    status_code = 409
    error_type = "state_error"


class InvoiceNotOpen(StateError):
    error_type = "invoice_not_open"

    def __init__(self, invoice_id: int, status: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is not open (status {status})")


class InvoiceAlreadyPaid(StateError):
    error_type = "invoice_already_paid"

    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice {invoice_id} is already paid")


class InvoiceAlreadyExists(StateError):
    error_type = "invoice_already_exists"

    def __init__(self, account_id: int, month: int, year: int):
        super().__init__(f"Account {account_id} already has an invoice for {month:02d}/{year}")


class InvoiceNotPayable(StateError):
    error_type = "invoice_not_payable"


class InvoiceHasPayments(StateError):
    error_type = "invoice_has_payments"

    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice {invoice_id} has payments and cannot be canceled")


class TransactionLocked(StateError):
    """Raised when a transaction is owned by an invoice payment or an installment."""

    error_type = "transaction_locked"

    def __init__(self, transaction_id: int, owner: str):
        super().__init__(
            f"Transaction {transaction_id} belongs to {owner} and cannot be changed directly"
        )


class AccountInactive(StateError):
    error_type = "account_inactive"

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is inactive")


class DuplicateAccountName(StateError):
    error_type = "duplicate_account_name"

    def __init__(self, name: str):
        super().__init__(f"An account named {name!r} already exists in this company")


class ActiveAccountExists(StateError):
    error_type = "active_account_exists"

    def __init__(self, account_type: str):
        super().__init__(
            f"An active {account_type} account already exists in this company; "
            f"deactivate it first"
        )


class CreditCardConfigExists(StateError):
    error_type = "credit_card_config_exists"

    def __init__(self, account_id: int):
        super().__init__(f"Account {account_id} already has a credit card configuration")


# ---------------------------------------------------------------------------
# Invariant guards
# ---------------------------------------------------------------------------

class InvariantError(LedgerError):
    status_code = 422
    error_type = "invariant_violation"


class NegativeBalanceNotAllowed(InvariantError):
    """
    Raised when a debit would take an account below zero and the
    account's policy disallows negative balances.
    """

    error_type = "negative_balance_not_allowed"

    def __init__(self, account_id: int, requested: Decimal, available: Decimal):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"requested {requested:.2f}, available {available:.2f}",
            requested=f"{requested:.2f}",
            available=f"{available:.2f}",
        )


class NegativeBalancePresent(InvariantError):
    error_type = "negative_balance_present"

    def __init__(self, account_id: int, balance: Decimal):
        super().__init__(
            f"Account {account_id} has a negative balance ({balance:.2f}); "
            f"negative balances cannot be disallowed"
        )


class CreditCardRequiresNegative(InvariantError):
    error_type = "credit_card_requires_negative"

    def __init__(self, account_id: int):
        super().__init__(f"Credit card account {account_id} must allow negative balances")


class InsufficientCreditLimit(InvariantError):
    error_type = "insufficient_credit_limit"

    def __init__(self, account_id: int, requested: Decimal, available: Decimal):
        self.account_id = account_id
        super().__init__(
            f"Insufficient credit limit on account {account_id}: "
            f"requested {requested:.2f}, available {available:.2f}",
            requested=f"{requested:.2f}",
            available=f"{available:.2f}",
        )


# ---------------------------------------------------------------------------
# Resource errors
# ---------------------------------------------------------------------------

class NotFoundError(LedgerError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, resource: str, resource_id):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class HasTransactions(LedgerError):
    status_code = 409
    error_type = "has_transactions"

    def __init__(self, account_id: int, count: int, action: str = "deleted; deactivate it instead"):
        super().__init__(f"Account {account_id} has {count} linked transactions and cannot be {action}")


class AccessDenied(LedgerError):
    status_code = 403
    error_type = "access_denied"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# FastAPI exception handler
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every LedgerError subclass carries its own status code and error_type,
    so a single handler keeps the response format consistent.
    """

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        logger.warning(
            "Request rejected",
            extra={
                "path": request.url.path,
                "error_type": exc.error_type,
                "detail": exc.detail,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type, **exc.extra},
        )
