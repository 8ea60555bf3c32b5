"""Read-only aggregations over a user's ledger.

These feed dashboards and exports, so a storage failure degrades to an
empty or zero result and is logged instead of raised. A missing user still
raises ``NotAuthenticated``.
"""

from __future__ import annotations

import functools
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List

from ledger_tracker import database as db
from ledger_tracker.budgets import budgets_with_spent, month_bounds
from ledger_tracker.core.errors import NotAuthenticated
from ledger_tracker.core.models import EXPENSE, INCOME, RecurringTransaction, Transaction
from ledger_tracker.session import LedgerSession

logger = logging.getLogger(__name__)


def _degrade(fallback):
    """Return ``fallback()`` when the wrapped report hits a storage error."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(session: LedgerSession, *args, **kwargs):
            if not session.is_authenticated:
                raise NotAuthenticated()
            try:
                return func(session, *args, **kwargs)
            except sqlite3.Error:
                logger.exception("Report %s failed; returning empty result", func.__name__)
                return fallback()

        return wrapper

    return decorator


@dataclass
class MonthlyStats:
    income: float = 0.0
    expense: float = 0.0

    @property
    def net(self) -> float:
        return self.income - self.expense

    @property
    def savings_rate(self) -> float:
        if self.income <= 0:
            return 0.0
        return (self.income - self.expense) / self.income * 100


@dataclass
class DayBucket:
    day: date
    income: float = 0.0
    expense: float = 0.0


@dataclass
class HealthScore:
    score: int
    cashflow_score: float
    budget_score: int
    asset_score: int
    savings_rate: float

    @property
    def label(self) -> str:
        if self.score >= 80:
            return "Excellent"
        if self.score >= 60:
            return "Healthy"
        if self.score >= 40:
            return "Fair"
        return "Attention"


@_degrade(MonthlyStats)
def monthly_stats(session: LedgerSession, today: date | None = None) -> MonthlyStats:
    start, end = month_bounds(today or date.today())
    stats = MonthlyStats()
    with session.connect() as conn:
        for tx in db.query_transactions(conn, session.user_id, start, end):
            if tx.kind == INCOME:
                stats.income += tx.amount
            else:
                stats.expense += tx.amount
    return stats


@_degrade(list)
def category_breakdown(
    session: LedgerSession, kind: str = EXPENSE, today: date | None = None
) -> List[Dict[str, object]]:
    """Per-category totals for ``kind`` this month, largest first."""
    start, end = month_bounds(today or date.today())
    with session.connect() as conn:
        totals = db.sum_by_category(conn, session.user_id, kind, start, end)
    return [
        {"category": name, "total": total}
        for name, total in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ]


@_degrade(list)
def daily_series(session: LedgerSession, days: int = 30, today: date | None = None) -> List[DayBucket]:
    """One bucket per calendar day for the trailing window ending today."""
    today = today or date.today()
    start = today - timedelta(days=days - 1)
    buckets = {start + timedelta(days=i): DayBucket(start + timedelta(days=i)) for i in range(days)}
    with session.connect() as conn:
        for tx in db.query_transactions(conn, session.user_id, start, today):
            bucket = buckets.get(tx.date)
            if bucket is None:
                continue
            if tx.kind == INCOME:
                bucket.income += tx.amount
            else:
                bucket.expense += tx.amount
    return [buckets[d] for d in sorted(buckets)]


@_degrade(list)
def upcoming_bills(session: LedgerSession, limit: int = 3) -> List[RecurringTransaction]:
    """Active expense rules, soonest due first."""
    with session.connect() as conn:
        bills = db.fetch_recurring(conn, session.user_id, active_only=True, kind=EXPENSE)
    return bills[: max(0, limit)]


@_degrade(list)
def recent_transactions(session: LedgerSession, limit: int = 5) -> List[Transaction]:
    with session.connect() as conn:
        return db.query_transactions(conn, session.user_id, newest_first=True, limit=max(0, limit))


@_degrade(float)
def balance(session: LedgerSession) -> float:
    """All-time income minus expense."""
    with session.connect() as conn:
        income = sum(db.sum_by_category(conn, session.user_id, INCOME).values())
        expense = sum(db.sum_by_category(conn, session.user_id, EXPENSE).values())
    return income - expense


@_degrade(lambda: HealthScore(0, 0.0, 0, 0, 0.0))
def health_score(session: LedgerSession, today: date | None = None) -> HealthScore:
    """Score the month's finances out of 100.

    Cashflow contributes up to 50 (a 20% savings rate earns all of it),
    budget adherence up to 30, and any money in savings goals 20.
    """
    stats = monthly_stats(session, today)
    rate = stats.savings_rate
    cashflow = max(0.0, min(50.0, rate / 20 * 50))

    statuses = budgets_with_spent(session, today)
    if statuses:
        kept = sum(1 for s in statuses if s.spent <= s.budget.limit)
        budget_score = round(kept / len(statuses) * 30)
    else:
        budget_score = 20 if rate > 0 else 0

    with session.connect() as conn:
        saved = sum(g.current_amount for g in db.fetch_goals(conn, session.user_id))
    asset_score = 20 if saved > 0 else 0

    return HealthScore(
        score=round(cashflow + budget_score + asset_score),
        cashflow_score=cashflow,
        budget_score=budget_score,
        asset_score=asset_score,
        savings_rate=rate,
    )


def export_snapshot(session: LedgerSession) -> Dict[str, list]:
    """Every collection for the user, as export and backup writers read it."""
    user_id = session.user_id
    with session.connect() as conn:
        return {
            "transactions": db.query_transactions(conn, user_id, newest_first=True),
            "budgets": db.fetch_budgets(conn, user_id),
            "recurring": db.fetch_recurring(conn, user_id),
            "savings": db.fetch_goals(conn, user_id),
            "categories": db.fetch_categories(conn, user_id),
        }
