"""
FinancialAccount model — a company-owned account whose balance the ledger maintains.

Each account has:
  - A name, unique within its company
  - A type: CHECKING, SAVINGS, CREDIT_CARD, INVESTMENT or CASH
  - An initial balance (set at creation, never changed afterwards)
  - A stored balance, updated in the same unit of work as every
    transaction that affects it
  - Policy flags: is_active, is_default, allow_negative_balance

Balance invariant:
  balance == initial_balance + Σ signed effect of COMPLETED transactions.
  account_service.get_balance() recomputes the right-hand side so the
  stored value can be audited at any time.

Database-level guards (the services check the same rules first):
  - at most one active default account per company
  - at most one active account per (company, type), credit cards exempt
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from ledger.database import Base
from ledger.money import ScaledDecimal


class AccountType(str, enum.Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT_CARD = "CREDIT_CARD"
    INVESTMENT = "INVESTMENT"
    CASH = "CASH"


class FinancialAccount(Base):
    __tablename__ = "financial_accounts"

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_financial_accounts_company_name"),
        Index(
            "uq_financial_accounts_default_per_company",
            "company_id",
            unique=True,
            sqlite_where=text("is_default AND is_active"),
            postgresql_where=text("is_default AND is_active"),
        ),
        Index(
            "uq_financial_accounts_active_type",
            "company_id",
            "type",
            unique=True,
            sqlite_where=text("is_active AND type != 'CREDIT_CARD'"),
            postgresql_where=text("is_active AND type != 'CREDIT_CARD'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owning company (managed by the company service, referenced by id only)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(120), nullable=False)

    type: Mapped[AccountType] = mapped_column(
        Enum(AccountType),
        nullable=False,
        default=AccountType.CHECKING,
    )

    account_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    initial_balance: Mapped[Decimal] = mapped_column(
        ScaledDecimal,
        nullable=False,
        default=Decimal("0.00"),
    )

    # Current balance, updated atomically with each COMPLETED transaction
    balance: Mapped[Decimal] = mapped_column(
        ScaledDecimal,
        nullable=False,
        default=Decimal("0.00"),
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Credit card accounts always allow negative balances
    allow_negative_balance: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_credit_card(self) -> bool:
        return self.type == AccountType.CREDIT_CARD
