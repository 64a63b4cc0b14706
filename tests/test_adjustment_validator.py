from datetime import date
from decimal import Decimal

import pytest

from errors import InvariantViolationError, ValidationError
from models import AdjustmentStatus, AdjustmentType, Expense, ExpenseAdjustment
from validators import (
    check_adjustment_cap,
    parse_adjustment_status,
    parse_adjustment_type,
    validate_adjustment_date,
    validate_amount_format,
    validate_page,
)


def expense(amount="100.00", expense_id=1):
    return Expense(
        id=expense_id,
        user_id="u1",
        name="Laptop",
        amount=Decimal(amount) if amount is not None else None,
        expense_date=date(2024, 1, 1),
    )


def sibling(adjustment_id, amount, expense_id=1, status=AdjustmentStatus.pending):
    return ExpenseAdjustment(
        id=adjustment_id,
        expense_id=expense_id,
        user_id="u1",
        adjustment_type=AdjustmentType.refund,
        adjustment_amount=Decimal(amount),
        adjustment_date=date(2024, 1, 2),
        status=status,
    )


def test_first_adjustment_within_expense_is_accepted() -> None:
    check = check_adjustment_cap(expense(), Decimal("60.00"), [])

    assert check.existing_total == Decimal("0.00")
    assert check.total == Decimal("60.00")
    assert check.remaining == Decimal("40.00")


def test_sum_over_expense_is_rejected_with_amounts() -> None:
    with pytest.raises(InvariantViolationError) as excinfo:
        check_adjustment_cap(expense(), Decimal("50.00"), [sibling(1, "60.00")])

    err = excinfo.value
    assert err.existing_total == Decimal("60.00")
    assert err.new_amount == Decimal("50.00")
    assert err.total == Decimal("110.00")
    assert "60.00 existing + 50.00 new = 110.00" in err.message
    assert "(100.00)" in err.message
    assert err.payload()["total"] == "110.00"


def test_exact_fill_is_allowed() -> None:
    check = check_adjustment_cap(expense(), Decimal("40.00"), [sibling(1, "60.00")])
    assert check.remaining == Decimal("0.00")


def test_single_amount_over_expense_fails_before_summing() -> None:
    with pytest.raises(InvariantViolationError) as excinfo:
        check_adjustment_cap(expense(), "150.00", [])

    assert excinfo.value.existing_total is None
    assert "cannot exceed the expense amount (100.00)" in excinfo.value.message


def test_every_status_counts_toward_the_cap() -> None:
    siblings = [
        sibling(1, "30.00", status=AdjustmentStatus.cancelled),
        sibling(2, "30.00", status=AdjustmentStatus.failed),
        sibling(3, "30.00", status=AdjustmentStatus.completed),
    ]
    with pytest.raises(InvariantViolationError):
        check_adjustment_cap(expense(), Decimal("10.01"), siblings)


def test_update_excludes_its_own_previous_value() -> None:
    siblings = [sibling(1, "60.00"), sibling(2, "40.00")]

    check = check_adjustment_cap(expense(), Decimal("55.00"), siblings, exclude_id=1)
    assert check.existing_total == Decimal("40.00")

    with pytest.raises(InvariantViolationError):
        check_adjustment_cap(expense(), Decimal("61.00"), siblings, exclude_id=1)


def test_siblings_from_other_expenses_are_ignored() -> None:
    check = check_adjustment_cap(
        expense(), Decimal("90.00"), [sibling(5, "80.00", expense_id=2)]
    )
    assert check.existing_total == Decimal("0.00")


def test_expense_without_amount_allows_nothing() -> None:
    with pytest.raises(InvariantViolationError):
        check_adjustment_cap(expense(amount=None), Decimal("0.01"), [])


@pytest.mark.parametrize(
    "value, message",
    [
        (None, "required"),
        (Decimal("0"), "greater than zero"),
        (Decimal("-5"), "greater than zero"),
        (Decimal("1.005"), "2 decimal places"),
        ("abc", "Invalid adjustment amount"),
        (Decimal("NaN"), "Invalid adjustment amount"),
    ],
)
def test_amount_format_errors(value, message) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_amount_format(value)
    assert message in excinfo.value.message


def test_amount_format_accepts_cents() -> None:
    assert validate_amount_format("12.30") == Decimal("12.30")
    assert validate_amount_format(7) == Decimal("7")


def test_enum_parsing_is_case_insensitive() -> None:
    assert parse_adjustment_type("refund") is AdjustmentType.refund
    assert parse_adjustment_type(" CashBack ") is AdjustmentType.cashback
    assert parse_adjustment_status("completed") is AdjustmentStatus.completed


def test_unknown_enum_lists_allowed_values() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_adjustment_type("chargeback")
    assert "REFUND, CASHBACK, REVERSAL" in excinfo.value.message

    with pytest.raises(ValidationError):
        parse_adjustment_status("")


def test_adjustment_date_bounds() -> None:
    validate_adjustment_date(None)
    validate_adjustment_date(date(2000, 1, 1))
    validate_adjustment_date(date(2100, 12, 31))
    with pytest.raises(ValidationError):
        validate_adjustment_date(date(1999, 12, 31))
    with pytest.raises(ValidationError):
        validate_adjustment_date(date(2101, 1, 1))


def test_page_defaults_and_allow_list() -> None:
    assert validate_page(None, None) == (0, 10)
    assert validate_page(-3, 50) == (0, 50)
    with pytest.raises(ValidationError) as excinfo:
        validate_page(0, 15)
    assert "[10, 20, 50, 100]" in excinfo.value.message
