"""
Credit card sub-ledger models.

  CreditCardConfig              — one per CREDIT_CARD account: limits, billing days, rates
  CreditCardInvoice             — one statement per (account, year, month)
  CreditCardInvoiceTransaction  — links ledger transactions to an invoice
  CreditCardInvoicePayment      — money applied to an invoice
  CreditCardInstallment         — a purchase split across N invoices
  CreditCardInstallmentPayment  — one share of an installment purchase

Invoice totals are derived, never edited by hand:
  total     = previous_balance + purchases + interest + fees - payments
  minimum   = total × minimum_payment_percent / 100
  remaining = total - paid
invoice_service.recalculate_invoice() re-derives them from the link and
payment rows, so they can be healed at any time.

Limit invariant (kept by credit_card_service):
  available_limit + used_limit == credit_limit, used_limit >= 0
"""

import datetime as dt
import enum
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger.database import Base
from ledger.money import ScaledDecimal


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class InvoiceStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    PAID = "PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    OVERDUE = "OVERDUE"
    CANCELED = "CANCELED"


class PaymentType(str, enum.Enum):
    FULL = "FULL"
    MINIMUM = "MINIMUM"
    PARTIAL = "PARTIAL"


class CreditCardConfig(Base):
    __tablename__ = "credit_card_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # One config per card account
    financial_account_id: Mapped[int] = mapped_column(
        ForeignKey("financial_accounts.id"),
        unique=True,
        nullable=False,
    )

    credit_limit: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)
    used_limit: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    available_limit: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)

    # Billing cycle
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_days_after_closing: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    # Charges (percent values are stored as percents, 10.00 == 10 %)
    annual_fee: Mapped[Decimal | None] = mapped_column(ScaledDecimal, nullable=True)
    annual_fee_monthly_charge: Mapped[Decimal | None] = mapped_column(ScaledDecimal, nullable=True)
    interest_rate: Mapped[Decimal | None] = mapped_column(ScaledDecimal, nullable=True)
    late_payment_fee: Mapped[Decimal | None] = mapped_column(ScaledDecimal, nullable=True)
    minimum_payment_percent: Mapped[Decimal] = mapped_column(
        ScaledDecimal, nullable=False, default=Decimal("10.00")
    )

    # Alerts
    alert_limit_percent: Mapped[Decimal] = mapped_column(
        ScaledDecimal, nullable=False, default=Decimal("80.00")
    )
    enable_limit_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_due_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    due_days_before_alert: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_invoice_generated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class CreditCardInvoice(Base):
    __tablename__ = "credit_card_invoices"

    __table_args__ = (
        UniqueConstraint(
            "financial_account_id",
            "reference_year",
            "reference_month",
            name="uq_credit_card_invoices_period",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    financial_account_id: Mapped[int] = mapped_column(
        ForeignKey("financial_accounts.id"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    reference_month: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_year: Mapped[int] = mapped_column(Integer, nullable=False)

    closing_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    due_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)

    previous_balance: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    purchases_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    payments_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    interest_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    fees_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    minimum_payment: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    paid_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))
    remaining_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False, default=Decimal("0.00"))

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus),
        nullable=False,
        default=InvoiceStatus.OPEN,
        index=True,
    )

    closed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class CreditCardInvoiceTransaction(Base):
    __tablename__ = "credit_card_invoice_transactions"

    __table_args__ = (
        UniqueConstraint("invoice_id", "transaction_id", name="uq_invoice_transaction"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("credit_card_invoices.id"), nullable=False, index=True
    )
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("financial_transactions.id"), nullable=False, index=True
    )
    installment_id: Mapped[int | None] = mapped_column(
        ForeignKey("credit_card_installments.id"), nullable=True, index=True
    )
    is_installment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class CreditCardInvoicePayment(Base):
    __tablename__ = "credit_card_invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("credit_card_invoices.id"), nullable=False, index=True
    )
    # The TRANSFER that moved the money into the card account
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("financial_transactions.id"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(Enum(PaymentType), nullable=False)
    payment_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class CreditCardInstallment(Base):
    __tablename__ = "credit_card_installments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    financial_account_id: Mapped[int] = mapped_column(
        ForeignKey("financial_accounts.id"), nullable=False, index=True
    )
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)
    number_of_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    # Regular share; the last share may differ by the rounding remainder
    installment_amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)

    purchase_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    first_due_date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    is_canceled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class CreditCardInstallmentPayment(Base):
    __tablename__ = "credit_card_installment_payments"

    __table_args__ = (
        UniqueConstraint("installment_id", "installment_number", name="uq_installment_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    installment_id: Mapped[int] = mapped_column(
        ForeignKey("credit_card_installments.id"), nullable=False, index=True
    )
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("credit_card_invoices.id"), nullable=False, index=True
    )
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("financial_transactions.id"), nullable=False
    )

    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)
    due_date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_canceled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
