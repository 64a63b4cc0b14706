"""Read-only aggregation over a user's expense and income records.

All date ranges are inclusive on both ends. Missing amounts count as zero
and an empty range sums to ``Decimal("0.00")``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import (
    AdjustmentStatus,
    Expense,
    ExpenseAdjustment,
    Income,
    User,
)


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(CENT)
    # floats come back from SQLite sums; go through str to avoid binary noise
    return Decimal(str(value)).quantize(CENT)


class LedgerQueryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def user_exists(self, user_id: Optional[str]) -> bool:
        if not user_id or not user_id.strip():
            return False
        stmt = select(func.count(User.id)).where(User.id == user_id.strip())
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def all_user_ids(self) -> list[str]:
        return list(self.session.scalars(select(User.id).order_by(User.id)).all())

    def get_expense(self, expense_id: int, *, for_update: bool = False) -> Optional[Expense]:
        stmt = select(Expense).where(Expense.id == expense_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.scalar(stmt)

    def expenses_by_id(self, expense_ids: Iterable[int]) -> dict[int, Expense]:
        ids = set(expense_ids)
        if not ids:
            return {}
        rows = self.session.scalars(select(Expense).where(Expense.id.in_(ids))).all()
        return {row.id: row for row in rows}

    def sum_income(self, user_id: str, start: date, end: date) -> Decimal:
        stmt = select(func.coalesce(func.sum(Income.amount), 0)).where(
            Income.user_id == user_id,
            Income.received_date.between(start, end),
        )
        return to_money(self.session.execute(stmt).scalar_one())

    def sum_expenses(
        self,
        user_id: str,
        start: date,
        end: date,
        *,
        net_of_completed_adjustments: bool = False,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(Expense.amount), 0)).where(
            Expense.user_id == user_id,
            Expense.expense_date.between(start, end),
        )
        gross = to_money(self.session.execute(stmt).scalar_one())
        if not net_of_completed_adjustments:
            return gross
        adjusted = self.completed_adjustments_in_range(user_id, start, end)
        return max(ZERO, gross - adjusted)

    def completed_adjustments_in_range(
        self, user_id: str, start: date, end: date
    ) -> Decimal:
        stmt = select(
            func.coalesce(func.sum(ExpenseAdjustment.adjustment_amount), 0)
        ).where(
            ExpenseAdjustment.user_id == user_id,
            ExpenseAdjustment.status == AdjustmentStatus.completed,
            ExpenseAdjustment.adjustment_date.between(start, end),
        )
        return to_money(self.session.execute(stmt).scalar_one())

    def incomes_in_range(self, user_id: str, start: date, end: date) -> list[Income]:
        stmt = (
            select(Income)
            .where(
                Income.user_id == user_id,
                Income.received_date.between(start, end),
            )
            .order_by(Income.received_date, Income.id)
        )
        return list(self.session.scalars(stmt).all())

    def expenses_in_range(self, user_id: str, start: date, end: date) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(
                Expense.user_id == user_id,
                Expense.expense_date.between(start, end),
            )
            .order_by(Expense.expense_date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())
