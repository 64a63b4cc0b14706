"""ledger schema: users, expenses, incomes, monthly balances, adjustments

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


ADJUSTMENT_TYPES = ("REFUND", "CASHBACK", "REVERSAL")
ADJUSTMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED", "CANCELLED")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=100), primary_key=True),
        sa.Column("username", sa.String(length=100)),
        sa.Column("email", sa.String(length=255)),
        *_timestamps(),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.String(length=100), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100)),
        sa.Column("amount", sa.Numeric(12, 2)),
        sa.Column("expense_date", sa.Date(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_expenses_user_id", "expenses", ["user_id"])
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "expense_date"])

    op.create_table(
        "incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.String(length=100), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "source", sa.String(length=100), nullable=False, server_default="Salary"
        ),
        sa.Column("amount", sa.Numeric(12, 2)),
        sa.Column("received_date", sa.Date(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_incomes_user_id", "incomes", ["user_id"])
    op.create_index("ix_incomes_user_date", "incomes", ["user_id", "received_date"])

    op.create_table(
        "monthly_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=100), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("opening_balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("closing_balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_balance_user_month"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_balance_month_range"),
    )

    op.create_table(
        "expense_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id", sa.Integer(), sa.ForeignKey("expenses.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(length=100), nullable=False),
        sa.Column(
            "adjustment_type",
            sa.Enum(*ADJUSTMENT_TYPES, name="adjustmenttype"),
            nullable=False,
        ),
        sa.Column("adjustment_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("adjustment_reason", sa.String(length=100)),
        sa.Column("adjustment_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*ADJUSTMENT_STATUSES, name="adjustmentstatus"),
            nullable=False,
            server_default="PENDING",
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "adjustment_amount > 0", name="ck_adjustment_amount_positive"
        ),
    )
    op.create_index("ix_adjustments_expense", "expense_adjustments", ["expense_id"])
    op.create_index(
        "ix_adjustments_user_date",
        "expense_adjustments",
        ["user_id", "adjustment_date"],
    )


def downgrade():
    op.drop_index("ix_adjustments_user_date", table_name="expense_adjustments")
    op.drop_index("ix_adjustments_expense", table_name="expense_adjustments")
    op.drop_table("expense_adjustments")
    op.drop_table("monthly_balances")
    op.drop_index("ix_incomes_user_date", table_name="incomes")
    op.drop_index("ix_incomes_user_id", table_name="incomes")
    op.drop_table("incomes")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_index("ix_expenses_user_id", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("users")
