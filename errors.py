"""Error kinds raised by the ledger services.

Client-side problems subclass the matching builtin (``ValueError``,
``LookupError``, ``PermissionError``) so callers that only know the builtins
still catch them. ``status_code`` is the HTTP status the API reports.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional


def _fmt(amount: Decimal) -> str:
    return f"{amount:.2f}"


class LedgerError(Exception):
    status_code = 500
    kind = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message}


class ValidationError(LedgerError, ValueError):
    status_code = 400
    kind = "validation_error"


class NotFoundError(LedgerError, LookupError):
    status_code = 404
    kind = "not_found"


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: '{user_id}'")
        self.user_id = user_id


class ExpenseNotFoundError(NotFoundError):
    def __init__(self, expense_id: int) -> None:
        super().__init__(f"Expense not found with id: {expense_id}")
        self.expense_id = expense_id


class AdjustmentNotFoundError(NotFoundError):
    def __init__(self, adjustment_id: int) -> None:
        super().__init__(f"Expense adjustment not found with id: {adjustment_id}")
        self.adjustment_id = adjustment_id


class MonthlyBalanceNotFoundError(NotFoundError):
    def __init__(self, user_id: str, year: int, month: int) -> None:
        super().__init__(
            f"Monthly balance not found for user '{user_id}' for {year}-{month:02d}"
        )
        self.user_id = user_id
        self.year = year
        self.month = month


class OwnershipError(LedgerError, PermissionError):
    status_code = 403
    kind = "ownership_error"


class InvariantViolationError(ValidationError):
    kind = "invariant_violation"

    def __init__(
        self,
        message: str,
        *,
        new_amount: Decimal,
        expense_amount: Decimal,
        existing_total: Optional[Decimal] = None,
    ) -> None:
        super().__init__(message)
        self.new_amount = new_amount
        self.expense_amount = expense_amount
        self.existing_total = existing_total
        self.total = (
            existing_total + new_amount if existing_total is not None else new_amount
        )

    @classmethod
    def exceeds_expense(
        cls, new_amount: Decimal, expense_amount: Decimal
    ) -> "InvariantViolationError":
        return cls(
            f"Adjustment amount ({_fmt(new_amount)}) cannot exceed the expense "
            f"amount ({_fmt(expense_amount)})",
            new_amount=new_amount,
            expense_amount=expense_amount,
        )

    @classmethod
    def exceeds_total(
        cls, new_amount: Decimal, existing_total: Decimal, expense_amount: Decimal
    ) -> "InvariantViolationError":
        total = existing_total + new_amount
        return cls(
            f"Total adjustments ({_fmt(existing_total)} existing + "
            f"{_fmt(new_amount)} new = {_fmt(total)}) cannot exceed the expense "
            f"amount ({_fmt(expense_amount)})",
            new_amount=new_amount,
            expense_amount=expense_amount,
            existing_total=existing_total,
        )

    def payload(self) -> dict[str, Any]:
        body = super().payload()
        body.update(
            {
                "new_amount": str(self.new_amount),
                "existing_total": (
                    str(self.existing_total) if self.existing_total is not None else None
                ),
                "total": str(self.total),
                "expense_amount": str(self.expense_amount),
            }
        )
        return body


class PersistenceError(LedgerError):
    status_code = 500
    kind = "persistence_error"
