import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def new_document_id() -> str:
    return uuid.uuid4().hex


class ExpenseIcon(str, Enum):
    restaurant = "restaurant"
    car = "car"
    flash = "flash"
    home = "home"
    fitness = "fitness"
    speedometer = "speedometer"
    wifi = "wifi"
    cart = "cart"
    medical = "medical"
    school = "school"
    airplane = "airplane"


ICON_BACKGROUNDS: dict[ExpenseIcon, str] = {
    ExpenseIcon.restaurant: "#ffedd5",
    ExpenseIcon.car: "#dbeafe",
    ExpenseIcon.flash: "#fef9c3",
    ExpenseIcon.home: "#f3e8ff",
    ExpenseIcon.fitness: "#dcfce7",
    ExpenseIcon.speedometer: "#fee2e2",
    ExpenseIcon.wifi: "#e0e7ff",
    ExpenseIcon.cart: "#fce7f3",
    ExpenseIcon.medical: "#ccfbf1",
    ExpenseIcon.school: "#fef3c7",
    ExpenseIcon.airplane: "#dbeafe",
}


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Expense(Base, TimestampMixin):
    """Expense template: a recurring or installment-based spend definition."""

    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=new_document_id
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    icon: Mapped[str] = mapped_column(
        String(40), nullable=False, default=ExpenseIcon.restaurant.value
    )
    icon_bg_color: Mapped[str] = mapped_column(String(9), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_payment_plan: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    total_payments: Mapped[Optional[int]] = mapped_column(Integer)
    current_payment: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_expenses_user_created", "user_id", "created_at"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "total_payments IS NULL OR total_payments > 0",
            name="ck_expenses_total_payments_positive",
        ),
        CheckConstraint(
            "current_payment IS NULL OR current_payment >= 0",
            name="ck_expenses_current_payment_non_negative",
        ),
    )


class Income(Base, TimestampMixin):
    __tablename__ = "income"

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=new_document_id
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    day: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_income_user_month", "user_id", "year", "month"),
        CheckConstraint("amount_cents > 0", name="ck_income_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_income_month_range"),
    )


class Budget(Base, TimestampMixin):
    """Per-month snapshot derived from expense templates and income entries.

    ``line_items`` is the embedded collection of line-item documents; it is
    always replaced as a whole, never mutated in place.
    """

    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=new_document_id
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    line_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_expenses_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_budget_user_month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )
