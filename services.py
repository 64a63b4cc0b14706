from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Generic, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cache import UserScopedCache
from errors import (
    AdjustmentNotFoundError,
    ExpenseNotFoundError,
    LedgerError,
    MonthlyBalanceNotFoundError,
    OwnershipError,
    PersistenceError,
    UserNotFoundError,
    ValidationError,
)
from ledger import LedgerQueryService, to_money
from locking import KeyedLocks, expense_locks
from models import (
    AdjustmentStatus,
    Expense,
    ExpenseAdjustment,
    MonthlyBalance,
)
from periods import (
    local_today,
    month_period,
    previous_month,
    resolve_range,
    resolve_target_month,
)
from schemas import AdjustmentCreateIn, AdjustmentOut, AdjustmentUpdateIn
from snapshots import SnapshotEngine
from validators import (
    check_adjustment_cap,
    parse_adjustment_status,
    parse_adjustment_type,
    validate_adjustment_date,
    validate_page,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    page: int
    size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        if not self.size:
            return 0
        return math.ceil(self.total_elements / self.size)


@dataclass
class BatchSummary:
    year: int
    month: int
    generated: int = 0
    existing: int = 0
    failed_user_ids: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def processed(self) -> int:
        return self.generated + self.existing + len(self.failed_user_ids)


def _clean_user_id(user_id: Optional[str]) -> str:
    if user_id is None or not user_id.strip():
        raise ValidationError("user_id is required")
    return user_id.strip()


def _paginate(session: Session, stmt: Select, page: int, size: int) -> Page:
    total = session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    items = list(session.scalars(stmt.limit(size).offset(page * size)).all())
    return Page(items=items, page=page, size=size, total_elements=int(total or 0))


class MonthlyBalanceService:
    def __init__(
        self, session: Session, *, engine: Optional[SnapshotEngine] = None
    ) -> None:
        self.session = session
        self.ledger = LedgerQueryService(session)
        self.engine = engine or SnapshotEngine(session, self.ledger)

    def _require_user(self, user_id: Optional[str]) -> str:
        uid = _clean_user_id(user_id)
        if not self.ledger.user_exists(uid):
            raise UserNotFoundError(uid)
        return uid

    def generate_snapshot(self, user_id: str, year: int, month: int) -> MonthlyBalance:
        return self.engine.generate_snapshot(user_id, year, month)

    def generate_for_user(
        self,
        user_id: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> MonthlyBalance:
        uid = self._require_user(user_id)
        year, month = resolve_target_month(year, month, today=today)
        return self.engine.generate_snapshot(uid, year, month)

    def generate_for_all_users(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> BatchSummary:
        year, month = resolve_target_month(year, month, today=today)
        summary = BatchSummary(year=year, month=month)
        user_ids = self.ledger.all_user_ids()
        logger.info(
            f"snapshot_batch_start: period={summary.label} users={len(user_ids)}"
        )
        for user_id in user_ids:
            try:
                result = self.engine.generate(user_id, year, month)
            except Exception:
                self.session.rollback()
                summary.failed_user_ids.append(user_id)
                logger.exception(
                    f"snapshot_batch_user_failed: user_id={user_id} "
                    f"period={summary.label}"
                )
                continue
            if result.created:
                summary.generated += 1
            else:
                summary.existing += 1
        logger.info(
            f"snapshot_batch_done: period={summary.label} "
            f"generated={summary.generated} existing={summary.existing} "
            f"failed={len(summary.failed_user_ids)}"
        )
        return summary

    def find(self, user_id: str, year: int, month: int) -> Optional[MonthlyBalance]:
        return self.engine.find(_clean_user_id(user_id), year, month)

    def get(self, user_id: str, year: int, month: int) -> MonthlyBalance:
        balance = self.find(user_id, year, month)
        if balance is None:
            raise MonthlyBalanceNotFoundError(user_id, year, month)
        return balance

    def previous_month_balance(
        self, user_id: str, today: Optional[date] = None
    ) -> Optional[MonthlyBalance]:
        year, month = previous_month(today)
        return self.find(user_id, year, month)

    def latest_for_user(self, user_id: str) -> Optional[MonthlyBalance]:
        stmt = (
            select(MonthlyBalance)
            .where(MonthlyBalance.user_id == _clean_user_id(user_id))
            .order_by(MonthlyBalance.year.desc(), MonthlyBalance.month.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def list_for_user(
        self, user_id: str, page: Optional[int] = None, size: Optional[int] = None
    ) -> Page[MonthlyBalance]:
        page, size = validate_page(page, size)
        uid = self._require_user(user_id)
        stmt = (
            select(MonthlyBalance)
            .where(MonthlyBalance.user_id == uid)
            .order_by(MonthlyBalance.year.desc(), MonthlyBalance.month.desc())
        )
        return _paginate(self.session, stmt, page, size)


class ExpenseAdjustmentService:
    """Create, change and remove refunds/cashbacks/reversals on an expense.

    Writes for one expense are serialised through ``locks`` and the parent
    row is re-read ``FOR UPDATE`` so the sum check and the write see the
    same siblings. Month totals are cached per user and dropped on every
    write by that user.
    """

    TOTALS_KEY = "completed_month_total"

    def __init__(
        self,
        session: Session,
        *,
        cache: Optional[UserScopedCache] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.session = session
        self.ledger = LedgerQueryService(session)
        self.cache = cache if cache is not None else UserScopedCache()
        self.locks = locks if locks is not None else expense_locks

    def _require_user(self, user_id: Optional[str]) -> str:
        uid = _clean_user_id(user_id)
        if not self.ledger.user_exists(uid):
            raise UserNotFoundError(uid)
        return uid

    def _owned_expense(
        self, expense_id: Optional[int], user_id: str, *, for_update: bool = False
    ) -> Expense:
        if expense_id is None:
            raise ValidationError("expense_id is required")
        expense = self.ledger.get_expense(expense_id, for_update=for_update)
        if expense is None:
            raise ExpenseNotFoundError(expense_id)
        if expense.user_id != user_id:
            raise OwnershipError("Expense does not belong to this user")
        return expense

    def _owned_adjustment(
        self, adjustment_id: int, user_id: str, action: str
    ) -> ExpenseAdjustment:
        adjustment = self.session.get(ExpenseAdjustment, adjustment_id)
        if adjustment is None:
            raise AdjustmentNotFoundError(adjustment_id)
        if adjustment.user_id != user_id:
            raise OwnershipError(
                f"User ID mismatch - you cannot {action} another user's adjustment"
            )
        return adjustment

    def _siblings(self, expense_id: int) -> list[ExpenseAdjustment]:
        stmt = (
            select(ExpenseAdjustment)
            .where(ExpenseAdjustment.expense_id == expense_id)
            .execution_options(populate_existing=True)
        )
        return list(self.session.scalars(stmt).all())

    def _commit(self, action: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"adjustment_write_failed: action={action}")
            raise PersistenceError(f"Could not {action}") from exc

    def _log_status_change(
        self,
        adjustment_id: int,
        old: AdjustmentStatus,
        new: AdjustmentStatus,
    ) -> None:
        if old == new:
            return
        if old.is_terminal:
            logger.warning(
                f"adjustment_status_reopened: id={adjustment_id} "
                f"from={old.value} to={new.value}"
            )
        else:
            logger.info(
                f"adjustment_status_changed: id={adjustment_id} "
                f"from={old.value} to={new.value}"
            )

    def create(self, data: AdjustmentCreateIn) -> ExpenseAdjustment:
        user_id = self._require_user(data.user_id)
        self._owned_expense(data.expense_id, user_id)
        adjustment_type = parse_adjustment_type(data.adjustment_type)
        status = (
            parse_adjustment_status(data.status)
            if data.status is not None
            else AdjustmentStatus.pending
        )

        with self.locks.hold(data.expense_id):
            try:
                expense = self._owned_expense(data.expense_id, user_id, for_update=True)
                check = check_adjustment_cap(
                    expense, data.adjustment_amount, self._siblings(expense.id)
                )
                validate_adjustment_date(data.adjustment_date)
                adjustment = ExpenseAdjustment(
                    expense_id=expense.id,
                    user_id=user_id,
                    adjustment_type=adjustment_type,
                    adjustment_amount=check.new_amount,
                    adjustment_reason=data.adjustment_reason,
                    adjustment_date=data.adjustment_date or local_today(),
                    status=status,
                )
                self.session.add(adjustment)
            except LedgerError:
                self.session.rollback()
                raise
            self._commit(f"create adjustment for expense {expense.id}")

        self.cache.invalidate(user_id)
        logger.info(
            f"adjustment_created: id={adjustment.id} expense_id={expense.id} "
            f"user_id={user_id} amount={check.new_amount} "
            f"total={check.total} limit={check.expense_amount}"
        )
        return adjustment

    def update(self, data: AdjustmentUpdateIn) -> ExpenseAdjustment:
        if data.adjustment_id is None:
            raise ValidationError("adjustment_id is required for update")
        user_id = _clean_user_id(data.user_id)
        adjustment = self._owned_adjustment(data.adjustment_id, user_id, "update")
        previous_status = adjustment.status

        with self.locks.hold(adjustment.expense_id):
            try:
                expense = self.ledger.get_expense(adjustment.expense_id, for_update=True)
                if expense is None:
                    raise ExpenseNotFoundError(adjustment.expense_id)

                changes: dict[str, object] = {}
                if data.adjustment_type is not None:
                    changes["adjustment_type"] = parse_adjustment_type(
                        data.adjustment_type
                    )
                if data.adjustment_amount is not None:
                    check = check_adjustment_cap(
                        expense,
                        data.adjustment_amount,
                        self._siblings(expense.id),
                        exclude_id=adjustment.id,
                    )
                    changes["adjustment_amount"] = check.new_amount
                if data.adjustment_reason is not None:
                    changes["adjustment_reason"] = data.adjustment_reason
                if data.adjustment_date is not None:
                    validate_adjustment_date(data.adjustment_date)
                    changes["adjustment_date"] = data.adjustment_date
                if data.status is not None:
                    changes["status"] = parse_adjustment_status(data.status)
            except LedgerError:
                self.session.rollback()
                raise

            for name, value in changes.items():
                setattr(adjustment, name, value)
            self._commit(f"update adjustment {adjustment.id}")

        self._log_status_change(adjustment.id, previous_status, adjustment.status)
        self.cache.invalidate(user_id)
        logger.info(
            f"adjustment_updated: id={adjustment.id} fields={sorted(changes)}"
        )
        return adjustment

    def delete(self, user_id: str, adjustment_id: Optional[int]) -> bool:
        if not user_id or adjustment_id is None:
            raise ValidationError("user_id and adjustment_id are required")
        uid = _clean_user_id(user_id)
        adjustment = self._owned_adjustment(adjustment_id, uid, "delete")
        self.session.delete(adjustment)
        self._commit(f"delete adjustment {adjustment_id}")
        self.cache.invalidate(uid)
        logger.info(f"adjustment_deleted: id={adjustment_id} user_id={uid}")
        return True

    def get(self, user_id: str, adjustment_id: int) -> ExpenseAdjustment:
        return self._owned_adjustment(adjustment_id, _clean_user_id(user_id), "view")

    def list_by_user(
        self, user_id: str, page: Optional[int] = None, size: Optional[int] = None
    ) -> Page[ExpenseAdjustment]:
        page, size = validate_page(page, size)
        uid = self._require_user(user_id)
        stmt = (
            select(ExpenseAdjustment)
            .where(ExpenseAdjustment.user_id == uid)
            .order_by(
                ExpenseAdjustment.adjustment_date.desc(), ExpenseAdjustment.id.desc()
            )
        )
        return _paginate(self.session, stmt, page, size)

    def list_by_expense(self, user_id: str, expense_id: int) -> list[ExpenseAdjustment]:
        expense = self._owned_expense(expense_id, _clean_user_id(user_id))
        stmt = (
            select(ExpenseAdjustment)
            .where(ExpenseAdjustment.expense_id == expense.id)
            .order_by(ExpenseAdjustment.adjustment_date, ExpenseAdjustment.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_by_date_range(
        self,
        user_id: str,
        start: date,
        end: date,
        page: Optional[int] = None,
        size: Optional[int] = None,
    ) -> Page[ExpenseAdjustment]:
        page, size = validate_page(page, size)
        uid = self._require_user(user_id)
        period = resolve_range(start, end)
        stmt = (
            select(ExpenseAdjustment)
            .where(
                ExpenseAdjustment.user_id == uid,
                ExpenseAdjustment.adjustment_date.between(period.start, period.end),
            )
            .order_by(
                ExpenseAdjustment.adjustment_date.desc(), ExpenseAdjustment.id.desc()
            )
        )
        return _paginate(self.session, stmt, page, size)

    def total_completed_for_expense(self, expense_id: int) -> Decimal:
        stmt = select(
            func.coalesce(func.sum(ExpenseAdjustment.adjustment_amount), 0)
        ).where(
            ExpenseAdjustment.expense_id == expense_id,
            ExpenseAdjustment.status == AdjustmentStatus.completed,
        )
        return to_money(self.session.execute(stmt).scalar_one())

    def total_completed_for_range(self, user_id: str, start: date, end: date) -> Decimal:
        return self.ledger.completed_adjustments_in_range(
            _clean_user_id(user_id), start, end
        )

    def total_completed_for_month(self, user_id: str, year: int, month: int) -> Decimal:
        uid = _clean_user_id(user_id)
        period = month_period(year, month)
        return self.cache.get_or_compute(
            uid,
            (self.TOTALS_KEY, year, month),
            lambda: self.ledger.completed_adjustments_in_range(
                uid, period.start, period.end
            ),
        )

    def completed_totals_for_expenses(
        self, expense_ids: Iterable[int]
    ) -> dict[int, Decimal]:
        ids = set(expense_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(
                ExpenseAdjustment.expense_id,
                func.coalesce(func.sum(ExpenseAdjustment.adjustment_amount), 0).label(
                    "total"
                ),
            )
            .where(
                ExpenseAdjustment.expense_id.in_(ids),
                ExpenseAdjustment.status == AdjustmentStatus.completed,
            )
            .group_by(ExpenseAdjustment.expense_id)
        ).all()
        return {int(row.expense_id): to_money(row.total) for row in rows}

    def describe(self, adjustments: Sequence[ExpenseAdjustment]) -> list[AdjustmentOut]:
        expenses = self.ledger.expenses_by_id(a.expense_id for a in adjustments)
        return [adjustment_out(a, expenses.get(a.expense_id)) for a in adjustments]


def adjustment_out(
    adjustment: ExpenseAdjustment, expense: Optional[Expense]
) -> AdjustmentOut:
    return AdjustmentOut(
        id=adjustment.id,
        expense_id=adjustment.expense_id,
        user_id=adjustment.user_id,
        adjustment_type=adjustment.adjustment_type.value,
        adjustment_amount=to_money(adjustment.adjustment_amount),
        adjustment_reason=adjustment.adjustment_reason,
        adjustment_date=adjustment.adjustment_date,
        status=adjustment.status.value,
        created_at=adjustment.created_at,
        updated_at=adjustment.updated_at,
        expense_name=expense.name if expense else None,
        original_expense_amount=(
            to_money(expense.amount) if expense and expense.amount is not None else None
        ),
    )
