from __future__ import annotations

import logging
from typing import Optional

from aggregation import aggregate, paid_flags
from schemas import ExpenseIn, IncomeIn
from store import ConstraintViolation, Document, DocumentNotFound, DocumentStore

logger = logging.getLogger(__name__)


class ExpenseService:
    def __init__(self, store: DocumentStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def list(self, limit: Optional[int] = None) -> list[Document]:
        expenses = self.store.find_many(
            "expenses", {"user_id": self.user_id}, order_by="-created_at"
        )
        return expenses[:limit] if limit else expenses

    def get(self, expense_id: str) -> Document:
        expense = self.store.find_one(
            "expenses", {"id": expense_id, "user_id": self.user_id}
        )
        if expense is None:
            raise DocumentNotFound("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Document:
        expense_id = self.store.insert(
            "expenses", {"user_id": self.user_id, **data.as_fields()}
        )
        return self.store.get("expenses", expense_id)

    def update(self, expense_id: str, data: ExpenseIn) -> Document:
        self.get(expense_id)
        self.store.update_fields("expenses", expense_id, data.as_fields())
        return self.store.get("expenses", expense_id)

    def delete(self, expense_id: str) -> None:
        self.get(expense_id)
        self.store.delete("expenses", expense_id)


class IncomeService:
    def __init__(self, store: DocumentStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def list(self) -> list[Document]:
        return self.store.find_many(
            "income", {"user_id": self.user_id}, order_by="-created_at"
        )

    def list_for_month(self, month: int, year: int) -> list[Document]:
        return self.store.find_many(
            "income",
            {"user_id": self.user_id, "month": month, "year": year},
            order_by="-created_at",
        )

    def get(self, income_id: str) -> Document:
        income = self.store.find_one("income", {"id": income_id, "user_id": self.user_id})
        if income is None:
            raise DocumentNotFound("Income not found")
        return income

    def create(self, data: IncomeIn) -> Document:
        income_id = self.store.insert(
            "income", {"user_id": self.user_id, **data.model_dump()}
        )
        return self.store.get("income", income_id)

    def update(self, income_id: str, data: IncomeIn) -> Document:
        self.get(income_id)
        self.store.update_fields("income", income_id, data.model_dump())
        return self.store.get("income", income_id)

    def delete(self, income_id: str) -> None:
        self.get(income_id)
        self.store.delete("income", income_id)


class BudgetService:
    """Keeps exactly one budget snapshot per (user, month, year) in step with
    the user's expense templates and income entries."""

    def __init__(self, store: DocumentStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def _find(self, month: int, year: int) -> Optional[Document]:
        return self.store.find_one(
            "budgets", {"user_id": self.user_id, "month": month, "year": year}
        )

    def _aggregate_fields(
        self, month: int, year: int, existing: Optional[Document]
    ) -> dict[str, object]:
        expenses = self.store.find_many(
            "expenses", {"user_id": self.user_id}, order_by="-created_at"
        )
        incomes = self.store.find_many(
            "income", {"user_id": self.user_id, "month": month, "year": year}
        )
        result = aggregate(
            self.user_id, month, year, expenses, incomes, paid_flags(existing)
        )
        return result.as_fields()

    def get(self, budget_id: str) -> Document:
        budget = self.store.find_one("budgets", {"id": budget_id, "user_id": self.user_id})
        if budget is None:
            raise DocumentNotFound("Budget not found")
        return budget

    def sync(self, month: int, year: int) -> str:
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")

        existing = self._find(month, year)
        fields = self._aggregate_fields(month, year, existing)

        if existing is None:
            try:
                budget_id = self.store.insert(
                    "budgets",
                    {"user_id": self.user_id, "month": month, "year": year, **fields},
                )
            except ConstraintViolation:
                # Another sync created the document first; reconcile into it.
                existing = self._find(month, year)
                if existing is None:
                    raise
                logger.info(
                    f"budget_sync: user={self.user_id} month={year}-{month:02d} "
                    f"lost_insert_race budget={existing['id']}"
                )
                fields = self._aggregate_fields(month, year, existing)
            else:
                logger.info(
                    f"budget_sync: user={self.user_id} month={year}-{month:02d} "
                    f"created=True items={len(fields['line_items'])} budget={budget_id}"
                )
                return budget_id

        budget_id = existing["id"]
        changed = any(existing.get(key) != value for key, value in fields.items())
        if changed:
            self.store.update_fields("budgets", budget_id, fields)
        logger.info(
            f"budget_sync: user={self.user_id} month={year}-{month:02d} "
            f"created=False changed={changed} items={len(fields['line_items'])} "
            f"budget={budget_id}"
        )
        return budget_id

    def for_month(self, month: int, year: int) -> Document:
        return self.get(self.sync(month, year))


class PaymentPlanService:
    def __init__(self, store: DocumentStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def mark_paid(
        self, budget_id: str, expense_id: str, paid: bool
    ) -> Optional[Document]:
        """Set a line item's paid flag and advance its installment plan.

        Returns the updated budget, or None when the budget no longer lists
        ``expense_id``. The paid flag, the template's installment counter and
        the mirrored counter on the line item are committed together.
        """
        with self.store.atomic():
            budget = self.store.find_one(
                "budgets", {"id": budget_id, "user_id": self.user_id}
            )
            if budget is None:
                raise DocumentNotFound("Budget not found")

            items = budget["line_items"]
            index = next(
                (i for i, item in enumerate(items) if item["expense_id"] == expense_id),
                None,
            )
            if index is None:
                logger.info(
                    f"mark_paid: budget={budget_id} expense={expense_id} stale_item=True"
                )
                return None

            item = items[index]
            was_paid = bool(item.get("paid"))
            items[index] = {**item, "paid": paid}
            self.store.update_fields("budgets", budget_id, {"line_items": items})
            logger.info(
                f"mark_paid: budget={budget_id} expense={expense_id} paid={paid}"
            )

            if item.get("is_payment_plan") and paid and not was_paid:
                current = self._advance_plan(expense_id)
                if current is not None:
                    items[index] = {**items[index], "current_payment": current}
                    self.store.update_fields(
                        "budgets", budget_id, {"line_items": items}
                    )

        return self.store.get("budgets", budget_id)

    def _advance_plan(self, expense_id: str) -> Optional[int]:
        expense = self.store.find_one(
            "expenses", {"id": expense_id, "user_id": self.user_id}
        )
        if expense is None:
            raise DocumentNotFound("Expense not found")
        if not expense["is_payment_plan"]:
            return None

        current = (expense["current_payment"] or 0) + 1
        fields: dict[str, object] = {"current_payment": current}
        total = expense["total_payments"]
        if total is not None and current >= total:
            fields["active"] = False
        self.store.update_fields("expenses", expense_id, fields)

        if "active" in fields:
            logger.info(
                f"payment_plan_complete: expense={expense_id} payments={current}/{total}"
            )
        return current
