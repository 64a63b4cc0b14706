from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


MONEY = Numeric(12, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AdjustmentType(str, Enum):
    refund = "REFUND"
    cashback = "CASHBACK"
    reversal = "REVERSAL"


class AdjustmentStatus(str, Enum):
    pending = "PENDING"
    completed = "COMPLETED"
    failed = "FAILED"
    cancelled = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not AdjustmentStatus.pending


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


ADJUSTMENT_TYPE_ENUM = SAEnum(
    AdjustmentType, name="adjustmenttype", values_callable=_enum_values
)
ADJUSTMENT_STATUS_ENUM = SAEnum(
    AdjustmentStatus, name="adjustmentstatus", values_callable=_enum_values
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(255))


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(100))
    amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)

    adjustments: Mapped[list["ExpenseAdjustment"]] = relationship(
        "ExpenseAdjustment", back_populates="expense"
    )

    __table_args__ = (Index("ix_expenses_user_date", "user_id", "expense_date"),)


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(String(100), nullable=False, default="Salary")
    amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    received_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (Index("ix_incomes_user_date", "user_id", "received_date"),)


class MonthlyBalance(Base):
    __tablename__ = "monthly_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    opening_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    closing_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_balance_user_month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_balance_month_range"),
    )


class ExpenseAdjustment(Base, TimestampMixin):
    __tablename__ = "expense_adjustments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(ForeignKey("expenses.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        ADJUSTMENT_TYPE_ENUM, nullable=False
    )
    adjustment_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    adjustment_reason: Mapped[Optional[str]] = mapped_column(String(100))
    adjustment_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[AdjustmentStatus] = mapped_column(
        ADJUSTMENT_STATUS_ENUM, nullable=False, default=AdjustmentStatus.pending
    )

    expense: Mapped["Expense"] = relationship("Expense", back_populates="adjustments")

    __table_args__ = (
        Index("ix_adjustments_expense", "expense_id"),
        Index("ix_adjustments_user_date", "user_id", "adjustment_date"),
        CheckConstraint("adjustment_amount > 0", name="ck_adjustment_amount_positive"),
    )
