from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from config import (
    ALLOWED_PAGE_SIZES,
    DEFAULT_PAGE,
    DEFAULT_PAGE_SIZE,
    MAX_ADJUSTMENT_YEAR,
    MIN_ADJUSTMENT_YEAR,
)
from errors import InvariantViolationError, ValidationError
from ledger import ZERO, to_money
from models import AdjustmentStatus, AdjustmentType, Expense, ExpenseAdjustment


logger = logging.getLogger(__name__)

AmountLike = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class AdjustmentCheck:
    expense_amount: Decimal
    existing_total: Decimal
    new_amount: Decimal

    @property
    def total(self) -> Decimal:
        return self.existing_total + self.new_amount

    @property
    def remaining(self) -> Decimal:
        return self.expense_amount - self.total


def _allowed(enum_cls) -> str:
    return ", ".join(member.value for member in enum_cls)


def parse_adjustment_type(value: Optional[Union[str, AdjustmentType]]) -> AdjustmentType:
    if isinstance(value, AdjustmentType):
        return value
    if value is None or not str(value).strip():
        raise ValidationError("adjustment_type is required")
    try:
        return AdjustmentType(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid adjustment type: '{value}'. Allowed values are: "
            f"{_allowed(AdjustmentType)}"
        ) from exc


def parse_adjustment_status(
    value: Optional[Union[str, AdjustmentStatus]],
) -> AdjustmentStatus:
    if isinstance(value, AdjustmentStatus):
        return value
    if value is None or not str(value).strip():
        raise ValidationError("status is required")
    try:
        return AdjustmentStatus(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid adjustment status: '{value}'. Allowed values are: "
            f"{_allowed(AdjustmentStatus)}"
        ) from exc


def validate_amount_format(amount: Optional[AmountLike]) -> Decimal:
    if amount is None:
        raise ValidationError("adjustment_amount is required")
    if not isinstance(amount, Decimal):
        try:
            amount = Decimal(str(amount).strip())
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid adjustment amount: '{amount}'") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid adjustment amount: '{amount}'")
    if amount <= 0:
        raise ValidationError("Adjustment amount must be greater than zero")
    if amount.as_tuple().exponent < -2:
        raise ValidationError("Adjustment amount can have at most 2 decimal places")
    return amount


def validate_adjustment_date(value: Optional[date]) -> None:
    if value is None:
        return
    if value.year < MIN_ADJUSTMENT_YEAR or value.year > MAX_ADJUSTMENT_YEAR:
        raise ValidationError(
            f"Adjustment date must be between year {MIN_ADJUSTMENT_YEAR} and "
            f"{MAX_ADJUSTMENT_YEAR}. Received: {value.isoformat()}"
        )


def validate_page(page: Optional[int], size: Optional[int]) -> tuple[int, int]:
    page = DEFAULT_PAGE if page is None else max(0, page)
    size = DEFAULT_PAGE_SIZE if size is None else size
    if size not in ALLOWED_PAGE_SIZES:
        raise ValidationError(
            f"Invalid page size. Allowed values: {list(ALLOWED_PAGE_SIZES)}"
        )
    return page, size


def check_adjustment_cap(
    expense: Expense,
    new_amount: Optional[AmountLike],
    siblings: Iterable[ExpenseAdjustment],
    exclude_id: Optional[int] = None,
) -> AdjustmentCheck:
    """Reject an adjustment amount that would push the expense's adjustments past its amount.

    Every sibling counts regardless of status; ``exclude_id`` drops the row
    being rewritten so its old value is not counted twice.
    """
    amount = validate_amount_format(new_amount)
    expense_amount = to_money(expense.amount)

    if amount > expense_amount:
        raise InvariantViolationError.exceeds_expense(amount, expense_amount)

    existing_total = ZERO
    for sibling in siblings:
        if sibling.expense_id is not None and sibling.expense_id != expense.id:
            continue
        if exclude_id is not None and sibling.id == exclude_id:
            continue
        existing_total += to_money(sibling.adjustment_amount)

    if existing_total + amount > expense_amount:
        raise InvariantViolationError.exceeds_total(amount, existing_total, expense_amount)

    check = AdjustmentCheck(
        expense_amount=expense_amount,
        existing_total=existing_total,
        new_amount=amount,
    )
    logger.debug(
        f"adjustment_cap_ok: expense_id={expense.id} limit={expense_amount} "
        f"existing={existing_total} new={amount} total={check.total}"
    )
    return check
