# ledger_tracker/recurring.py
from __future__ import annotations

import logging
import sqlite3
import threading
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Set

from ledger_tracker import database as db
from ledger_tracker.core.errors import LedgerError, NotFound
from ledger_tracker.core.models import MONTHLY, WEEKLY, RecurringTransaction, Transaction
from ledger_tracker.core.validation import validate_recurring
from ledger_tracker.ledger import add_transaction
from ledger_tracker.session import LedgerSession

logger = logging.getLogger(__name__)

AUTO_NOTE = "Auto-generated via Automation"

_inflight_guard = threading.Lock()
_inflight: Set[tuple[str, str]] = set()


def _add_months(original_date: date, months: int, day: int | None = None) -> date:
    month_index = original_date.month - 1 + months
    year = original_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(day or original_date.day, monthrange(year, month)[1])
    return date(year, month, day)


def next_due(start: date, frequency: str, n: int = 1, anchor_day: int | None = None) -> date:
    """The n-th due date after ``start``.

    Monthly dates are counted from ``start`` on ``anchor_day`` (default: the
    day of ``start``), so a short month clamps without shifting later ones.
    """
    if frequency == WEEKLY:
        return start + timedelta(weeks=n)
    if frequency == MONTHLY:
        return _add_months(start, n, anchor_day)
    raise ValueError(f"Unsupported frequency '{frequency}'.")


def _run_key(session: LedgerSession) -> tuple[str, str]:
    return (session.store.db_path, session.user_id)


def _claim(key: tuple[str, str]) -> bool:
    with _inflight_guard:
        if key in _inflight:
            return False
        _inflight.add(key)
        return True


def _release(key: tuple[str, str]) -> None:
    with _inflight_guard:
        _inflight.discard(key)


@dataclass
class RecurrenceResult:
    generated: List[Transaction] = field(default_factory=list)
    per_rule: Dict[int, int] = field(default_factory=dict)
    failed: Dict[int, str] = field(default_factory=dict)
    skipped: bool = False

    @property
    def count(self) -> int:
        return len(self.generated)


def _catch_up(session: LedgerSession, rule: RecurringTransaction, today: date) -> List[Transaction]:
    user_id = session.user_id
    start = rule.next_due_date
    generated: List[Transaction] = []
    with session.connect() as conn:
        due = start
        while due <= today:
            tx = Transaction(
                title=rule.title,
                amount=rule.amount,
                kind=rule.kind,
                category=rule.category,
                date=due,
                notes=AUTO_NOTE,
            )
            add_transaction(session, tx)
            generated.append(tx)
            due = next_due(start, rule.frequency, len(generated), rule.anchor_day)
        if generated:
            db.set_next_due_date(conn, user_id, rule.id, due)
    if generated:
        rule.next_due_date = due
    return generated


def process_recurring(session: LedgerSession, today: date | None = None) -> RecurrenceResult:
    """Turn every due occurrence of the user's active rules into transactions.

    Missed periods are caught up in one pass. Each rule is handled in its own
    unit of work: its generated transactions and its advanced
    ``next_due_date`` commit together. A rule that fails to store is rolled
    back, reported in ``failed`` and retried on the next run, while the
    remaining rules still run. A second call while one is already running
    for the same user returns immediately with ``skipped`` set.
    """
    key = _run_key(session)
    if not _claim(key):
        logger.warning("Recurring run already in progress for %s", session.user_id)
        return RecurrenceResult(skipped=True)

    try:
        today = today or date.today()
        result = RecurrenceResult()
        with session.connect() as conn:
            rules = db.fetch_recurring(conn, session.user_id, active_only=True)

        for rule in rules:
            try:
                generated = _catch_up(session, rule, today)
            except (LedgerError, sqlite3.Error) as exc:
                logger.exception("Recurring rule %s failed; it will be retried", rule.id)
                result.failed[rule.id] = str(exc)
                continue
            if generated:
                result.generated.extend(generated)
                result.per_rule[rule.id] = len(generated)
                logger.info(
                    "Recurring rule %s generated %d transaction(s); next due %s",
                    rule.id, len(generated), rule.next_due_date,
                )
        return result
    finally:
        _release(key)


# -----------------------------------------------------------------------------
# Rule commands
# -----------------------------------------------------------------------------

def add_recurring(session: LedgerSession, rule: RecurringTransaction) -> int:
    user_id = session.user_id
    validate_recurring(rule)
    with session.connect() as conn:
        return db.insert_recurring(conn, user_id, rule)


def update_recurring(session: LedgerSession, rule: RecurringTransaction) -> None:
    user_id = session.user_id
    if rule.id is None:
        raise NotFound("RecurringTransaction", None)
    validate_recurring(rule)
    with session.connect() as conn:
        stored = db.get_recurring(conn, user_id, rule.id)
        if stored is None:
            raise NotFound("RecurringTransaction", rule.id)
        if rule.next_due_date != stored.next_due_date:
            # Rescheduled by hand: the new date sets the day of month.
            rule.anchor_day = rule.next_due_date.day
        elif rule.anchor_day is None:
            rule.anchor_day = stored.anchor_day
        db.replace_recurring(conn, user_id, rule)


def set_recurring_active(session: LedgerSession, rule_id: int, active: bool) -> None:
    """Pause or resume a rule without deleting it."""
    user_id = session.user_id
    with session.connect() as conn:
        rule = db.get_recurring(conn, user_id, rule_id)
        if rule is None:
            raise NotFound("RecurringTransaction", rule_id)
        rule.active = bool(active)
        db.replace_recurring(conn, user_id, rule)


def delete_recurring(session: LedgerSession, rule_id: int) -> int:
    with session.connect() as conn:
        return db.delete_recurring(conn, session.user_id, [rule_id])


def list_recurring(session: LedgerSession, active_only: bool = False) -> List[RecurringTransaction]:
    with session.connect() as conn:
        return db.fetch_recurring(conn, session.user_id, active_only=active_only)
