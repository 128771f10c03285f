from aggregation import aggregate, is_eligible, paid_flags


def _expense(expense_id: str, amount_cents: int, **overrides) -> dict:
    expense = {
        "id": expense_id,
        "user_id": "u1",
        "title": expense_id.title(),
        "amount_cents": amount_cents,
        "icon": "fitness",
        "icon_bg_color": "#dcfce7",
        "active": True,
        "is_payment_plan": False,
        "total_payments": None,
        "current_payment": None,
    }
    expense.update(overrides)
    return expense


def _income(amount_cents: int, month: int, year: int, user_id: str = "u1") -> dict:
    return {
        "id": f"i-{amount_cents}-{month}-{year}",
        "user_id": user_id,
        "name": "Salary",
        "amount_cents": amount_cents,
        "month": month,
        "year": year,
    }


def test_plan_not_started_is_excluded_until_first_payment() -> None:
    waiting = _expense("sofa", 10_000, is_payment_plan=True, total_payments=6, current_payment=0)
    started = dict(waiting, current_payment=1)

    assert is_eligible(waiting) is False
    assert is_eligible(started) is True


def test_inactive_expense_is_excluded_but_missing_flag_counts_as_active() -> None:
    assert is_eligible(_expense("gym", 4_500, active=False)) is False
    legacy = _expense("gym", 4_500)
    del legacy["active"]
    assert is_eligible(legacy) is True


def test_income_is_date_scoped_while_expenses_are_not() -> None:
    result = aggregate(
        "u1",
        6,
        2024,
        [_expense("gym", 4_500)],
        [
            _income(300_000, 6, 2024),
            _income(50_000, 5, 2024),
            _income(70_000, 6, 2023),
        ],
        {},
    )

    assert [item.expense_id for item in result.line_items] == ["gym"]
    assert result.total_income_cents == 300_000
    assert result.total_expenses_cents == 4_500
    assert result.balance_cents == 295_500


def test_paid_flags_are_carried_forward_by_expense_id() -> None:
    result = aggregate(
        "u1",
        1,
        2025,
        [_expense("rent", 90_000), _expense("gym", 4_500)],
        [],
        {"gym": True, "deleted": True},
    )

    by_id = {item.expense_id: item.paid for item in result.line_items}
    assert by_id == {"rent": False, "gym": True}


def test_other_users_documents_are_ignored() -> None:
    result = aggregate(
        "u1",
        3,
        2025,
        [_expense("gym", 4_500), _expense("theirs", 1_000, user_id="u2")],
        [_income(10_000, 3, 2025, user_id="u2")],
        {},
    )

    assert [item.expense_id for item in result.line_items] == ["gym"]
    assert result.total_income_cents == 0


def test_empty_inputs_give_empty_totals() -> None:
    result = aggregate("u1", 2, 2025, [], [], {})

    assert result.line_items == ()
    assert result.as_fields() == {
        "line_items": [],
        "total_income_cents": 0,
        "total_expenses_cents": 0,
        "balance_cents": 0,
    }


def test_line_items_mirror_installment_progress() -> None:
    result = aggregate(
        "u1",
        2,
        2025,
        [_expense("laptop", 12_500, is_payment_plan=True, total_payments=12, current_payment=3)],
        [],
        {},
    )

    (item,) = result.as_fields()["line_items"]
    assert item["is_payment_plan"] is True
    assert item["current_payment"] == 3
    assert item["total_payments"] == 12
    assert item["paid"] is False


def test_paid_flags_reads_stored_budget() -> None:
    budget = {
        "line_items": [
            {"expense_id": "a", "paid": True},
            {"expense_id": "b", "paid": False},
        ]
    }
    assert paid_flags(budget) == {"a": True, "b": False}
    assert paid_flags(None) == {}

