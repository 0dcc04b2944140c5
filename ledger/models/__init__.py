"""
SQLAlchemy ORM models package.

All models are imported here so that Base.metadata knows every table
before create_all() runs, and other modules can import from
ledger.models directly.
"""

from ledger.models.account import AccountType, FinancialAccount  # noqa: F401
from ledger.models.transaction import (  # noqa: F401
    FinancialTag,
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
)
from ledger.models.credit_card import (  # noqa: F401
    CreditCardConfig,
    CreditCardInstallment,
    CreditCardInstallmentPayment,
    CreditCardInvoice,
    CreditCardInvoicePayment,
    CreditCardInvoiceTransaction,
    InvoiceStatus,
    PaymentType,
)
