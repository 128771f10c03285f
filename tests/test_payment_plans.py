import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from schemas import ExpenseIn, IncomeIn
from services import BudgetService, ExpenseService, IncomeService, PaymentPlanService
from store import ChangeFeed, DocumentNotFound, DocumentStore, StoreUnavailable


def make_store(session: Session) -> DocumentStore:
    return DocumentStore(session, feed=ChangeFeed())


def _plan(title: str, current: int, total: int) -> ExpenseIn:
    return ExpenseIn(
        title=title,
        amount_cents=12_500,
        is_payment_plan=True,
        total_payments=total,
        current_payment=current,
    )


def test_final_installment_completes_plan() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        laptop = expenses.create(_plan("Laptop", current=11, total=12))

        budgets = BudgetService(store, "u")
        june_id = budgets.sync(6, 2024)
        budget = PaymentPlanService(store, "u").mark_paid(june_id, laptop["id"], True)

        template = expenses.get(laptop["id"])
        assert template["current_payment"] == 12
        assert template["active"] is False

        (item,) = budget["line_items"]
        assert item["paid"] is True
        assert item["current_payment"] == 12

        july = budgets.get(budgets.sync(7, 2024))
        assert july["line_items"] == []


def test_paying_non_plan_expense_only_flips_paid() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        gym = expenses.create(ExpenseIn(title="Gym", amount_cents=4_500))
        rent = expenses.create(ExpenseIn(title="Rent", amount_cents=90_000))
        IncomeService(store, "u").create(
            IncomeIn(name="Salary", amount_cents=300_000, month=6, year=2024)
        )

        budgets = BudgetService(store, "u")
        budget_id = budgets.sync(6, 2024)
        before = budgets.get(budget_id)

        after = PaymentPlanService(store, "u").mark_paid(budget_id, gym["id"], True)

        paid = {item["expense_id"]: item["paid"] for item in after["line_items"]}
        assert paid == {gym["id"]: True, rent["id"]: False}
        for key in ("total_income_cents", "total_expenses_cents", "balance_cents"):
            assert after[key] == before[key]
        assert expenses.get(gym["id"])["current_payment"] is None
        assert expenses.get(gym["id"])["active"] is True


def test_unpaying_never_rewinds_progress() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        sofa = expenses.create(_plan("Sofa", current=2, total=6))
        budget_id = BudgetService(store, "u").sync(3, 2025)
        plans = PaymentPlanService(store, "u")

        plans.mark_paid(budget_id, sofa["id"], True)
        budget = plans.mark_paid(budget_id, sofa["id"], False)

        assert expenses.get(sofa["id"])["current_payment"] == 3
        assert budget["line_items"][0]["paid"] is False
        assert budget["line_items"][0]["current_payment"] == 3


def test_repeated_paid_action_advances_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        sofa = expenses.create(_plan("Sofa", current=1, total=6))
        budget_id = BudgetService(store, "u").sync(3, 2025)
        plans = PaymentPlanService(store, "u")

        plans.mark_paid(budget_id, sofa["id"], True)
        plans.mark_paid(budget_id, sofa["id"], True)

        assert expenses.get(sofa["id"])["current_payment"] == 2


def test_paid_state_and_progress_survive_next_sync() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        sofa = ExpenseService(store, "u").create(_plan("Sofa", current=1, total=6))
        budgets = BudgetService(store, "u")
        budget_id = budgets.sync(3, 2025)

        PaymentPlanService(store, "u").mark_paid(budget_id, sofa["id"], True)
        budgets.sync(3, 2025)

        (item,) = budgets.get(budget_id)["line_items"]
        assert item["paid"] is True
        assert item["current_payment"] == 2


def test_plan_starts_appearing_after_first_payment() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        bike = expenses.create(_plan("Bike", current=0, total=4))
        budgets = BudgetService(store, "u")

        assert budgets.get(budgets.sync(5, 2025))["line_items"] == []

        expenses.update(bike["id"], _plan("Bike", current=1, total=4))
        (item,) = budgets.get(budgets.sync(6, 2025))["line_items"]
        assert item["expense_id"] == bike["id"]


def test_stale_line_item_is_a_no_op() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        gym = ExpenseService(store, "u").create(ExpenseIn(title="Gym", amount_cents=4_500))
        budgets = BudgetService(store, "u")
        budget_id = budgets.sync(6, 2024)
        before = budgets.get(budget_id)

        assert PaymentPlanService(store, "u").mark_paid(budget_id, "gone", True) is None
        assert budgets.get(budget_id)["line_items"] == before["line_items"]
        assert before["line_items"][0]["expense_id"] == gym["id"]


def test_other_users_budget_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        gym = ExpenseService(store, "alice").create(ExpenseIn(title="Gym", amount_cents=4_500))
        budget_id = BudgetService(store, "alice").sync(6, 2024)

        with pytest.raises(DocumentNotFound):
            PaymentPlanService(store, "mallory").mark_paid(budget_id, gym["id"], True)


def test_deleted_template_aborts_without_marking_paid() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        sofa = expenses.create(_plan("Sofa", current=1, total=6))
        budgets = BudgetService(store, "u")
        budget_id = budgets.sync(3, 2025)
        expenses.delete(sofa["id"])

        with pytest.raises(DocumentNotFound):
            PaymentPlanService(store, "u").mark_paid(budget_id, sofa["id"], True)

        assert budgets.get(budget_id)["line_items"][0]["paid"] is False


def test_failed_template_write_leaves_budget_untouched(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = make_store(session)
        expenses = ExpenseService(store, "u")
        sofa = expenses.create(_plan("Sofa", current=1, total=6))
        budgets = BudgetService(store, "u")
        budget_id = budgets.sync(3, 2025)

        real_update = DocumentStore.update_fields

        def failing_update(self, collection, doc_id, fields):
            if collection == "expenses":
                raise StoreUnavailable("backend went away")
            return real_update(self, collection, doc_id, fields)

        monkeypatch.setattr(DocumentStore, "update_fields", failing_update)

        with pytest.raises(StoreUnavailable):
            PaymentPlanService(store, "u").mark_paid(budget_id, sofa["id"], True)

        monkeypatch.undo()
        (item,) = budgets.get(budget_id)["line_items"]
        assert item["paid"] is False
        assert item["current_payment"] == 1
        assert expenses.get(sofa["id"])["current_payment"] == 1
