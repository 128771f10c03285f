"""expenses, income and budget snapshots

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "expenses",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("icon", sa.String(length=40), nullable=False),
        sa.Column("icon_bg_color", sa.String(length=9), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "is_payment_plan", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("total_payments", sa.Integer()),
        sa.Column("current_payment", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "total_payments IS NULL OR total_payments > 0",
            name="ck_expenses_total_payments_positive",
        ),
        sa.CheckConstraint(
            "current_payment IS NULL OR current_payment >= 0",
            name="ck_expenses_current_payment_non_negative",
        ),
    )
    op.create_index("ix_expenses_user_created", "expenses", ["user_id", "created_at"])

    op.create_table(
        "income",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("day", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_income_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_income_month_range"),
    )
    op.create_index("ix_income_user_month", "income", ["user_id", "year", "month"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("line_items", sa.JSON(), nullable=False),
        sa.Column(
            "total_income_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_expenses_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_budget_user_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )


def downgrade() -> None:
    op.drop_table("budgets")
    op.drop_index("ix_income_user_month", table_name="income")
    op.drop_table("income")
    op.drop_index("ix_expenses_user_created", table_name="expenses")
    op.drop_table("expenses")
