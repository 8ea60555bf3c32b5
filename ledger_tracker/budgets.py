from __future__ import annotations

import logging
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date
from typing import List

from ledger_tracker import database as db
from ledger_tracker.core.errors import ValidationFailure
from ledger_tracker.core.models import EXPENSE, Budget, BudgetStatus
from ledger_tracker.core.validation import validate_budget
from ledger_tracker.session import LedgerSession

logger = logging.getLogger(__name__)


def month_bounds(today: date) -> tuple[date, date]:
    """First and last calendar day of ``today``'s month."""
    last_day = monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


@dataclass
class BudgetOverview:
    statuses: List[BudgetStatus] = field(default_factory=list)
    days_remaining: int = 1

    @property
    def total_budgeted(self) -> float:
        return sum(s.budget.limit for s in self.statuses)

    @property
    def total_spent(self) -> float:
        return sum(s.spent for s in self.statuses)

    @property
    def remaining(self) -> float:
        return max(0.0, self.total_budgeted - self.total_spent)

    @property
    def daily_safe_spend(self) -> float:
        return self.remaining / max(1, self.days_remaining)


def save_budget(session: LedgerSession, budget: Budget) -> int:
    """Store a budget, returning its id.

    A budget with an id replaces that row. Without an id it is upserted by
    category: an existing budget for the category only has its limit
    changed.
    """
    user_id = session.user_id
    validate_budget(budget)
    with session.connect() as conn:
        if budget.id is not None:
            clash = db.find_budget(conn, user_id, budget.category)
            if clash and clash.id != budget.id:
                raise ValidationFailure("category", f"a budget for '{budget.category}' already exists")
            db.replace_budget(conn, user_id, budget)
            return budget.id
        existing = db.find_budget(conn, user_id, budget.category)
        if existing:
            existing.limit = budget.limit
            db.replace_budget(conn, user_id, existing)
            budget.id = existing.id
            logger.info("Budget for %s changed to %.2f", budget.category, budget.limit)
            return existing.id
        return db.insert_budget(conn, user_id, budget)


def delete_budget(session: LedgerSession, budget_id: int) -> int:
    with session.connect() as conn:
        return db.delete_budgets(conn, session.user_id, [budget_id])


def list_budgets(session: LedgerSession) -> List[Budget]:
    with session.connect() as conn:
        return db.fetch_budgets(conn, session.user_id)


def budgets_with_spent(session: LedgerSession, today: date | None = None) -> List[BudgetStatus]:
    """Each stored budget with this month's expense total for its category."""
    today = today or date.today()
    start, end = month_bounds(today)
    user_id = session.user_id
    with session.connect() as conn:
        budgets = db.fetch_budgets(conn, user_id)
        spending = db.sum_by_category(conn, user_id, EXPENSE, start, end)
    return [BudgetStatus(budget=b, spent=spending.get(b.category, 0.0)) for b in budgets]


def budget_overview(session: LedgerSession, today: date | None = None) -> BudgetOverview:
    today = today or date.today()
    days_in_month = monthrange(today.year, today.month)[1]
    return BudgetOverview(
        statuses=budgets_with_spent(session, today),
        days_remaining=max(1, days_in_month - today.day),
    )
