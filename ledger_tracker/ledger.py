"""Transaction and savings goal commands.

Transactions that reference a savings goal move money into or out of that
goal: an expense adds its amount to the goal, an income withdraws it. The
transaction write and the goal adjustment always happen inside one unit of
work, so no reader sees one without the other.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, List

from ledger_tracker import database as db
from ledger_tracker.categories import add_category, resolve_category, seed_categories
from ledger_tracker.core.errors import NotFound
from ledger_tracker.core.models import EXPENSE, SavingsGoal, Transaction
from ledger_tracker.core.validation import require_positive, validate_goal, validate_transaction
from ledger_tracker.session import LedgerSession

logger = logging.getLogger(__name__)

SAVINGS_CATEGORY = "Savings"


def _apply_adjustment(conn, user_id: str, goal_id: int | None, delta: float) -> None:
    if goal_id is None or not delta:
        return
    if not db.adjust_goal(conn, user_id, goal_id, delta):
        # Dangling reference: the transaction stands, the goal is skipped.
        logger.warning("Savings goal %s not found for %s; adjustment %.2f skipped", goal_id, user_id, delta)


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------

def add_transaction(session: LedgerSession, tx: Transaction) -> int:
    """Persist a new transaction and apply its linked-goal adjustment."""
    user_id = session.user_id
    validate_transaction(tx)
    with session.connect() as conn:
        seed_categories(session)
        tx.category = resolve_category(conn, user_id, tx.category, tx.kind)
        tx_id = db.insert_transaction(conn, user_id, tx)
        _apply_adjustment(conn, user_id, tx.savings_goal_id, tx.goal_adjustment)
    logger.info("Added %s %s %.2f (%s)", tx.kind, tx.title, tx.amount, tx_id)
    return tx_id


def update_transaction(session: LedgerSession, tx: Transaction) -> None:
    """Replace a stored transaction, moving its goal adjustment along with it.

    The old adjustment is reversed on the old goal before the new one is
    applied, so editing an amount or relinking to another goal keeps both
    goals consistent.
    """
    user_id = session.user_id
    if tx.id is None:
        raise NotFound("Transaction", None)
    validate_transaction(tx)
    with session.connect() as conn:
        old = db.get_transaction(conn, user_id, tx.id)
        if old is None:
            raise NotFound("Transaction", tx.id)
        tx.category = resolve_category(conn, user_id, tx.category, tx.kind)
        db.replace_transaction(conn, user_id, tx)
        _apply_adjustment(conn, user_id, old.savings_goal_id, -old.goal_adjustment)
        _apply_adjustment(conn, user_id, tx.savings_goal_id, tx.goal_adjustment)
    logger.info("Updated transaction %s", tx.id)


def delete_transactions(session: LedgerSession, ids: Iterable[int]) -> int:
    """Delete transactions by id; unknown ids are ignored.

    Linked goals get their adjustments reversed unless the session's config
    sets ``ledger.reverse_goal_on_delete`` to false.
    """
    user_id = session.user_id
    id_list = list(ids)
    with session.connect() as conn:
        doomed = db.fetch_transactions_by_ids(conn, user_id, id_list)
        deleted = db.delete_transactions(conn, user_id, id_list)
        if session.reverse_goal_on_delete:
            for old in doomed:
                _apply_adjustment(conn, user_id, old.savings_goal_id, -old.goal_adjustment)
    logger.info("Deleted %d of %d transaction(s)", deleted, len(id_list))
    return deleted


def delete_transaction(session: LedgerSession, tx_id: int) -> int:
    return delete_transactions(session, [tx_id])


def get_transaction(session: LedgerSession, tx_id: int) -> Transaction | None:
    with session.connect() as conn:
        return db.get_transaction(conn, session.user_id, tx_id)


def list_transactions(
    session: LedgerSession,
    start_date: date | None = None,
    end_date: date | None = None,
    kind: str | None = None,
    category: str | None = None,
) -> List[Transaction]:
    """All matching transactions, newest first."""
    with session.connect() as conn:
        return db.query_transactions(
            conn, session.user_id, start_date, end_date, kind, category, newest_first=True
        )


# -----------------------------------------------------------------------------
# Savings goals
# -----------------------------------------------------------------------------

def add_goal(session: LedgerSession, goal: SavingsGoal) -> int:
    user_id = session.user_id
    validate_goal(goal)
    with session.connect() as conn:
        goal_id = db.insert_goal(conn, user_id, goal)
    logger.info("Added savings goal %s (%s)", goal.name, goal_id)
    return goal_id


def update_goal(session: LedgerSession, goal: SavingsGoal) -> None:
    user_id = session.user_id
    if goal.id is None:
        raise NotFound("SavingsGoal", None)
    validate_goal(goal)
    with session.connect() as conn:
        db.replace_goal(conn, user_id, goal)


def delete_goal(session: LedgerSession, goal_id: int) -> int:
    """Delete a goal. Transactions linked to it keep a dangling reference."""
    with session.connect() as conn:
        return db.delete_goals(conn, session.user_id, [goal_id])


def get_goal(session: LedgerSession, goal_id: int) -> SavingsGoal | None:
    with session.connect() as conn:
        return db.get_goal(conn, session.user_id, goal_id)


def list_goals(session: LedgerSession) -> List[SavingsGoal]:
    with session.connect() as conn:
        return db.fetch_goals(conn, session.user_id)


def fund_goal(
    session: LedgerSession,
    goal_id: int,
    amount: float,
    record_expense: bool = False,
    on: date | None = None,
) -> int | None:
    """Add money to a savings goal.

    With ``record_expense`` an expense transaction linked to the goal is
    created and the linker performs the increment; otherwise the goal's
    balance is bumped directly and no transaction exists. Returns the new
    transaction id, or ``None`` for a direct top-up.
    """
    user_id = session.user_id
    amount = require_positive(amount, "amount")
    with session.connect() as conn:
        goal = db.get_goal(conn, user_id, goal_id)
        if goal is None:
            raise NotFound("SavingsGoal", goal_id)
        if not record_expense:
            db.adjust_goal(conn, user_id, goal_id, amount)
            logger.info("Funded goal %s directly with %.2f", goal_id, amount)
            return None

        seed_categories(session)
        add_category(session, SAVINGS_CATEGORY, EXPENSE)
        return add_transaction(
            session,
            Transaction(
                title=f"Savings: {goal.name}",
                amount=amount,
                kind=EXPENSE,
                category=SAVINGS_CATEGORY,
                date=on or date.today(),
                notes="Auto-added via Add Funds",
                savings_goal_id=goal_id,
            ),
        )
