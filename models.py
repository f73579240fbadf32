from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_CATEGORY = "Other"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


def now_timestamp() -> datetime:
    """Current UTC time as a naive datetime truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(TIMESTAMP_FORMAT)


AMOUNT = Numeric(12, 2)
AGGREGATE = Numeric(14, 2)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_timestamp, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_timestamp, onupdate=now_timestamp, nullable=False
    )


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column("income_id", Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DEFAULT_CATEGORY
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_incomes_user_timestamp", "user_id", "timestamp"),
        CheckConstraint("amount >= 0", name="ck_incomes_amount_positive"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column("expense_id", Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DEFAULT_CATEGORY
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_expenses_user_timestamp", "user_id", "timestamp"),
        Index("ix_expenses_user_category", "user_id", "category"),
        CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )


class FinancialData(Base, TimestampMixin):
    """Projection of every income and expense into one queryable table."""

    __tablename__ = "user_financial_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    income_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("incomes.income_id"), unique=True
    )
    expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("expenses.expense_id"), unique=True
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DEFAULT_CATEGORY
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_financial_data_user_timestamp", "user_id", "timestamp"),
        CheckConstraint(
            "(income_id IS NOT NULL AND expense_id IS NULL AND type = 'income')"
            " OR (expense_id IS NOT NULL AND income_id IS NULL AND type = 'expense')",
            name="ck_financial_data_single_source",
        ),
    )


class FinancialSummary(Base, TimestampMixin):
    __tablename__ = "user_financial_summary"

    user_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=False
    )
    current_balance: Mapped[Decimal] = mapped_column(
        AGGREGATE, nullable=False, default=Decimal("0")
    )
    total_income: Mapped[Decimal] = mapped_column(
        AGGREGATE, nullable=False, default=Decimal("0")
    )
    total_expenses: Mapped[Decimal] = mapped_column(
        AGGREGATE, nullable=False, default=Decimal("0")
    )
    net_savings: Mapped[Decimal] = mapped_column(
        AGGREGATE, nullable=False, default=Decimal("0")
    )
    last_income_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_expense_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
