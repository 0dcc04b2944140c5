"""
FinancialTransaction model — every movement of money in a company's ledger.

Key fields:
  - type: INCOME (money into to_account), EXPENSE (money out of
    from_account) or TRANSFER (from_account -> to_account)
  - amount: Always positive; the direction comes from the type
  - status: PENDING, COMPLETED or CANCELED. Only COMPLETED transactions
    are reflected in account balances. CANCELED is terminal.
  - from_account_id / to_account_id: Required according to the type
  - category_id: Opaque reference to the category module
  - tags: Free-form labels, unique by name within a company
  - is_adjustment: Set on the audit rows written by adjust_balance

Why amount is always positive:
  Storing a positive amount with a separate type is clearer than signed
  values. The account-balance effect is derived from the type:
    EXPENSE   from -= amount
    INCOME    to   += amount
    TRANSFER  from -= amount, to += amount
"""

import enum
import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger.database import Base
from ledger.money import ScaledDecimal


class TransactionType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


transaction_tags = Table(
    "financial_transaction_tags",
    Base.metadata,
    Column("transaction_id", ForeignKey("financial_transactions.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("financial_tags.id", ondelete="CASCADE"), primary_key=True),
)


class FinancialTag(Base):
    __tablename__ = "financial_tags"

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_financial_tags_company_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False)


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"

    __table_args__ = (
        # Amount is always positive; type gives the direction
        CheckConstraint("amount > 0", name="ck_financial_transactions_positive_amount"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)

    amount: Mapped[Decimal] = mapped_column(ScaledDecimal, nullable=False)

    # Business date of the movement, indexed for period queries
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)

    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    from_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("financial_accounts.id"),
        nullable=True,
        index=True,
    )
    to_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("financial_accounts.id"),
        nullable=True,
        index=True,
    )

    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Balance adjustments only move the balance: no card limit or invoice effects
    is_adjustment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # User who recorded the transaction (identity service id)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: dt.datetime.now(dt.timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: dt.datetime.now(dt.timezone.utc),
        onupdate=lambda: dt.datetime.now(dt.timezone.utc),
        nullable=False,
    )

    # selectin: tags are always loaded eagerly, lazy loads are not possible in async
    tags: Mapped[list[FinancialTag]] = relationship(
        secondary=transaction_tags,
        lazy="selectin",
    )

    @property
    def tag_names(self) -> list[str]:
        return sorted(tag.name for tag in self.tags)
