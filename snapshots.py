from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from errors import PersistenceError
from ledger import ZERO, LedgerQueryService, to_money
from models import MonthlyBalance
from periods import month_period, shift_month, validate_year_month


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotResult:
    balance: MonthlyBalance
    created: bool


class SnapshotEngine:
    """Computes frozen per-month balances chained on the prior month's close.

    A snapshot is written once. Asking again for the same period returns the
    stored row; a missing prior month opens the period at zero rather than
    walking further back.
    """

    def __init__(
        self,
        session: Session,
        ledger: Optional[LedgerQueryService] = None,
        *,
        net_completed_adjustments: Optional[bool] = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or LedgerQueryService(session)
        if net_completed_adjustments is None:
            net_completed_adjustments = get_settings().net_completed_adjustments
        self.net_completed_adjustments = net_completed_adjustments

    def find(self, user_id: str, year: int, month: int) -> Optional[MonthlyBalance]:
        stmt = select(MonthlyBalance).where(
            MonthlyBalance.user_id == user_id,
            MonthlyBalance.year == year,
            MonthlyBalance.month == month,
        )
        return self.session.scalar(stmt)

    def opening_balance(self, user_id: str, year: int, month: int) -> Decimal:
        prev_year, prev_month = shift_month(year, month, -1)
        previous = self.find(user_id, prev_year, prev_month)
        if previous is None:
            return ZERO
        return to_money(previous.closing_balance)

    def generate_snapshot(self, user_id: str, year: int, month: int) -> MonthlyBalance:
        return self.generate(user_id, year, month).balance

    def generate(self, user_id: str, year: int, month: int) -> SnapshotResult:
        validate_year_month(year, month)
        existing = self.find(user_id, year, month)
        if existing is not None:
            logger.info(
                f"snapshot_exists: user_id={user_id} period={year}-{month:02d}"
            )
            return SnapshotResult(existing, False)

        period = month_period(year, month)
        opening = self.opening_balance(user_id, year, month)
        income = self.ledger.sum_income(user_id, period.start, period.end)
        expenses = self.ledger.sum_expenses(
            user_id,
            period.start,
            period.end,
            net_of_completed_adjustments=self.net_completed_adjustments,
        )
        closing = opening + income - expenses

        balance = MonthlyBalance(
            user_id=user_id,
            year=year,
            month=month,
            opening_balance=opening,
            closing_balance=closing,
        )
        self.session.add(balance)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            winner = self.find(user_id, year, month)
            if winner is None:
                logger.exception(
                    f"snapshot_write_failed: user_id={user_id} period={period.slug}"
                )
                raise PersistenceError(
                    f"Could not store monthly balance for user '{user_id}' "
                    f"for {period.slug}"
                ) from exc
            logger.info(
                f"snapshot_race_lost: user_id={user_id} period={period.slug} "
                f"snapshot_id={winner.id}"
            )
            return SnapshotResult(winner, False)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"snapshot_write_failed: user_id={user_id} period={period.slug}"
            )
            raise PersistenceError(
                f"Could not store monthly balance for user '{user_id}' "
                f"for {period.slug}"
            ) from exc

        logger.info(
            f"snapshot_generated: user_id={user_id} period={period.slug} "
            f"opening={opening} income={income} expenses={expenses} closing={closing}"
        )
        return SnapshotResult(balance, True)
