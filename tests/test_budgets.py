from datetime import date

import pytest

from ledger_tracker import ledger
from ledger_tracker.budgets import (
    budget_overview,
    budgets_with_spent,
    delete_budget,
    list_budgets,
    month_bounds,
    save_budget,
)
from ledger_tracker.core.errors import NotFound, ValidationFailure
from ledger_tracker.core.models import Budget, Transaction

TODAY = date(2025, 5, 20)


def _spend(session, amount, category="Groceries", on=TODAY, kind="expense"):
    ledger.add_transaction(
        session,
        Transaction(title="Shop", amount=amount, kind=kind, category=category, date=on),
    )


def test_month_bounds():
    assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(date(2025, 12, 31)) == (date(2025, 12, 1), date(2025, 12, 31))


def test_spent_only_counts_current_month_expenses(session):
    save_budget(session, Budget(category="Groceries", limit=100))
    _spend(session, 30)
    _spend(session, 12, on=date(2025, 5, 1))
    _spend(session, 8, on=date(2025, 5, 31))
    _spend(session, 50, on=date(2025, 4, 30))
    _spend(session, 70, on=date(2025, 6, 1))
    _spend(session, 999, category="Refunds", kind="income")

    (status,) = budgets_with_spent(session, TODAY)
    assert status.spent == 50
    assert status.remaining == 50
    assert status.ratio == 0.5
    assert not status.over_limit


def test_budget_without_matching_transactions_reports_zero(session):
    save_budget(session, Budget(category="Gym", limit=40))
    _spend(session, 30)

    (status,) = budgets_with_spent(session, TODAY)
    assert status.budget.category == "Gym"
    assert status.spent == 0


def test_save_budget_upserts_by_category(session):
    first = save_budget(session, Budget(category="Groceries", limit=100))
    second = save_budget(session, Budget(category="Groceries", limit=250))

    assert first == second
    (budget,) = list_budgets(session)
    assert budget.limit == 250


def test_save_budget_with_id_replaces_or_fails(session):
    budget_id = save_budget(session, Budget(category="Groceries", limit=100))
    save_budget(session, Budget(category="Food & Dining", limit=80, id=budget_id))
    (budget,) = list_budgets(session)
    assert budget.category == "Food & Dining"

    with pytest.raises(NotFound):
        save_budget(session, Budget(category="Fuel", limit=10, id=budget_id + 100))


def test_invalid_budget_rejected(session):
    with pytest.raises(ValidationFailure):
        save_budget(session, Budget(category="Groceries", limit=0))
    with pytest.raises(ValidationFailure):
        save_budget(session, Budget(category="", limit=10))
    assert list_budgets(session) == []


def test_delete_budget_is_idempotent(session):
    budget_id = save_budget(session, Budget(category="Groceries", limit=100))
    assert delete_budget(session, budget_id) == 1
    assert delete_budget(session, budget_id) == 0
    assert list_budgets(session) == []


def test_overview_totals_and_daily_safe_spend(session):
    save_budget(session, Budget(category="Groceries", limit=100))
    save_budget(session, Budget(category="Transport", limit=50))
    _spend(session, 30)

    overview = budget_overview(session, TODAY)
    assert overview.total_budgeted == 150
    assert overview.total_spent == 30
    assert overview.remaining == 120
    assert overview.days_remaining == 11
    assert overview.daily_safe_spend == pytest.approx(120 / 11)


def test_overview_remaining_never_negative(session):
    save_budget(session, Budget(category="Groceries", limit=10))
    _spend(session, 30, on=date(2025, 5, 31))

    overview = budget_overview(session, date(2025, 5, 31))
    assert overview.remaining == 0
    assert overview.days_remaining == 1
    assert overview.daily_safe_spend == 0
    assert overview.statuses[0].over_limit


def test_save_budget_rejects_category_taken_by_another_budget(session):
    save_budget(session, Budget(category="Food", limit=100))
    fuel_id = save_budget(session, Budget(category="Fuel", limit=50))

    with pytest.raises(ValidationFailure):
        save_budget(session, Budget(category="Food", limit=80, id=fuel_id))

    assert sorted((b.category, b.limit) for b in list_budgets(session)) == [("Food", 100), ("Fuel", 50)]
    # keeping its own category is fine
    save_budget(session, Budget(category="Fuel", limit=70, id=fuel_id))
    assert {b.category: b.limit for b in list_budgets(session)}["Fuel"] == 70
