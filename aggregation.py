from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional


@dataclass(frozen=True)
class BudgetLineItem:
    expense_id: str
    title: str
    amount_cents: int
    icon: str
    icon_bg_color: str
    paid: bool
    is_payment_plan: bool
    current_payment: Optional[int]
    total_payments: Optional[int]

    def as_document(self) -> dict[str, Any]:
        return {
            "expense_id": self.expense_id,
            "title": self.title,
            "amount_cents": self.amount_cents,
            "icon": self.icon,
            "icon_bg_color": self.icon_bg_color,
            "paid": self.paid,
            "is_payment_plan": self.is_payment_plan,
            "current_payment": self.current_payment,
            "total_payments": self.total_payments,
        }


@dataclass(frozen=True)
class BudgetAggregate:
    line_items: tuple[BudgetLineItem, ...]
    total_income_cents: int
    total_expenses_cents: int

    @property
    def balance_cents(self) -> int:
        return self.total_income_cents - self.total_expenses_cents

    def as_fields(self) -> dict[str, Any]:
        """Budget document fields owned by the aggregator."""
        return {
            "line_items": [item.as_document() for item in self.line_items],
            "total_income_cents": self.total_income_cents,
            "total_expenses_cents": self.total_expenses_cents,
            "balance_cents": self.balance_cents,
        }


def is_eligible(expense: Mapping[str, Any]) -> bool:
    if expense.get("active") is False:
        return False
    if expense.get("is_payment_plan"):
        # A plan with no recorded payment has not started yet.
        return (expense.get("current_payment") or 0) > 0
    return True


def paid_flags(budget: Optional[Mapping[str, Any]]) -> dict[str, bool]:
    if not budget:
        return {}
    return {
        item["expense_id"]: bool(item.get("paid", False))
        for item in budget.get("line_items") or []
    }


def aggregate(
    user_id: str,
    month: int,
    year: int,
    expenses: Iterable[Mapping[str, Any]],
    incomes: Iterable[Mapping[str, Any]],
    prior_paid: Mapping[str, bool],
) -> BudgetAggregate:
    """Derive the line items and totals a month's budget should hold.

    Expense templates are not date-scoped: every eligible template of the
    user contributes one line item, in the order given. Income entries only
    count when their month and year match exactly. ``paid`` is carried over
    from ``prior_paid`` by expense id and defaults to False.
    """
    line_items = tuple(
        BudgetLineItem(
            expense_id=expense["id"],
            title=expense["title"],
            amount_cents=int(expense["amount_cents"]),
            icon=expense["icon"],
            icon_bg_color=expense["icon_bg_color"],
            paid=bool(prior_paid.get(expense["id"], False)),
            is_payment_plan=bool(expense.get("is_payment_plan")),
            current_payment=expense.get("current_payment"),
            total_payments=expense.get("total_payments"),
        )
        for expense in expenses
        if expense["user_id"] == user_id and is_eligible(expense)
    )

    total_income = sum(
        int(income["amount_cents"])
        for income in incomes
        if income["user_id"] == user_id
        and income["month"] == month
        and income["year"] == year
    )
    total_expenses = sum(item.amount_cents for item in line_items)
    return BudgetAggregate(
        line_items=line_items,
        total_income_cents=total_income,
        total_expenses_cents=total_expenses,
    )
