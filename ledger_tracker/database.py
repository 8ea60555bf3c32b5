import logging
import sqlite3
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from ledger_tracker.core.errors import NotFound
from ledger_tracker.core.models import (
    Budget,
    Category,
    RecurringTransaction,
    SavingsGoal,
    Transaction,
)
from ledger_tracker.core.validation import require_user

logger = logging.getLogger(__name__)

COLLECTIONS = ("transactions", "budgets", "recurring", "savings", "categories")

Listener = Callable[[str, str], None]


def _init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            amount REAL NOT NULL,
            kind TEXT NOT NULL,
            category TEXT NOT NULL,
            date TEXT NOT NULL,
            notes TEXT,
            attachment TEXT,
            savings_goal_id INTEGER
        );
        CREATE INDEX IF NOT EXISTS ix_tx_user ON transactions (user_id);
        CREATE INDEX IF NOT EXISTS ix_tx_user_date ON transactions (user_id, date);
        CREATE INDEX IF NOT EXISTS ix_tx_user_kind ON transactions (user_id, kind);
        CREATE INDEX IF NOT EXISTS ix_tx_user_category ON transactions (user_id, category);

        CREATE TABLE IF NOT EXISTS savings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            target_amount REAL NOT NULL,
            current_amount REAL NOT NULL DEFAULT 0,
            deadline TEXT,
            color TEXT NOT NULL,
            icon TEXT
        );
        CREATE INDEX IF NOT EXISTS ix_savings_user ON savings (user_id);

        CREATE TABLE IF NOT EXISTS budgets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            category TEXT NOT NULL,
            amount_limit REAL NOT NULL,
            period TEXT NOT NULL,
            UNIQUE(user_id, category)
        );

        CREATE TABLE IF NOT EXISTS recurring (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            amount REAL NOT NULL,
            kind TEXT NOT NULL,
            category TEXT NOT NULL,
            frequency TEXT NOT NULL,
            next_due_date TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            anchor_day INTEGER
        );
        CREATE INDEX IF NOT EXISTS ix_recurring_user ON recurring (user_id);

        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            kind TEXT NOT NULL,
            is_default INTEGER NOT NULL DEFAULT 0,
            UNIQUE(user_id, name, kind)
        );
        """
    )
    conn.commit()


class _TrackedConnection(sqlite3.Connection):
    """Connection that remembers which (collection, user) pairs it wrote to."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.changes: set[tuple[str, str]] = set()


def _touch(conn: sqlite3.Connection, collection: str, user_id: str) -> None:
    changes = getattr(conn, "changes", None)
    if changes is not None:
        changes.add((collection, user_id))


class LedgerStore:
    """SQLite-backed record store for the five ledger collections.

    Every read and write goes through :meth:`connect`, which serialises
    units of work behind a process-wide re-entrant lock and wraps each unit
    in one SQLite transaction. A nested ``connect`` on the same thread joins
    the outer unit instead of opening a new one.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn: Optional[_TrackedConnection] = None
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        conn = sqlite3.connect(self.db_path)
        try:
            _init_db(conn)
        finally:
            conn.close()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is not None:
                yield self._conn
                return

            conn = sqlite3.connect(self.db_path, factory=_TrackedConnection)
            conn.row_factory = sqlite3.Row
            self._conn = conn
            try:
                with conn:
                    yield conn
                changes = set(conn.changes)
            finally:
                self._conn = None
                conn.close()
        self._notify(changes)

    def subscribe(self, collection: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener(collection, user_id)`` for committed writes.

        Returns a callable that removes the listener again.
        """
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{collection}'")
        self._listeners[collection].append(listener)
        return lambda: self._listeners[collection].remove(listener)

    def _notify(self, changes: Iterable[tuple[str, str]]) -> None:
        for collection, user_id in sorted(changes):
            for listener in list(self._listeners.get(collection, ())):
                try:
                    listener(collection, user_id)
                except Exception:
                    logger.exception("Change listener failed for %s", collection)


# -----------------------------------------------------------------------------
# Shared helpers
# -----------------------------------------------------------------------------

def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _placeholders(ids: List[int]) -> str:
    return ", ".join("?" for _ in ids)


def _delete(conn: sqlite3.Connection, table: str, user_id: str, ids: Iterable[int]) -> int:
    user_id = require_user(user_id)
    id_list = [int(i) for i in ids]
    if not id_list:
        return 0
    cur = conn.execute(
        f"DELETE FROM {table} WHERE user_id = ? AND id IN ({_placeholders(id_list)})",
        [user_id, *id_list],
    )
    if cur.rowcount:
        _touch(conn, table, user_id)
    return cur.rowcount


def _build_filters(
    user_id: str,
    start_date: date | None,
    end_date: date | None,
    kind: str | None,
    category: str | None,
) -> tuple[str, list]:
    conditions: list[str] = ["user_id = ?"]
    params: list = [user_id]
    if start_date:
        conditions.append("date >= ?")
        params.append(start_date.isoformat())
    if end_date:
        conditions.append("date <= ?")
        params.append(end_date.isoformat())
    if kind:
        conditions.append("kind = ?")
        params.append(kind)
    if category:
        conditions.append("category = ?")
        params.append(category)
    return " WHERE " + " AND ".join(conditions), params


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------

_TX_COLUMNS = "id, user_id, title, amount, kind, category, date, notes, attachment, savings_goal_id"


def _tx_from_row(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        amount=float(row["amount"]),
        kind=row["kind"],
        category=row["category"],
        date=date.fromisoformat(row["date"]),
        notes=row["notes"],
        attachment=row["attachment"],
        savings_goal_id=row["savings_goal_id"],
    )


def _tx_values(tx: Transaction) -> tuple:
    return (
        tx.title,
        float(tx.amount),
        tx.kind,
        tx.category,
        tx.date.isoformat(),
        tx.notes,
        tx.attachment,
        tx.savings_goal_id,
    )


def insert_transaction(conn: sqlite3.Connection, user_id: str, tx: Transaction) -> int:
    user_id = require_user(user_id)
    cur = conn.execute(
        """
        INSERT INTO transactions
        (user_id, title, amount, kind, category, date, notes, attachment, savings_goal_id)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, *_tx_values(tx)),
    )
    tx.id = cur.lastrowid
    tx.user_id = user_id
    _touch(conn, "transactions", user_id)
    return tx.id


def get_transaction(conn: sqlite3.Connection, user_id: str, tx_id: int) -> Transaction | None:
    user_id = require_user(user_id)
    row = conn.execute(
        f"SELECT {_TX_COLUMNS} FROM transactions WHERE user_id = ? AND id = ?",
        (user_id, tx_id),
    ).fetchone()
    return _tx_from_row(row) if row else None


def replace_transaction(conn: sqlite3.Connection, user_id: str, tx: Transaction) -> None:
    user_id = require_user(user_id)
    cur = conn.execute(
        """
        UPDATE transactions
        SET title = ?, amount = ?, kind = ?, category = ?, date = ?,
            notes = ?, attachment = ?, savings_goal_id = ?
        WHERE user_id = ? AND id = ?
        """,
        (*_tx_values(tx), user_id, tx.id),
    )
    if cur.rowcount == 0:
        raise NotFound("Transaction", tx.id)
    tx.user_id = user_id
    _touch(conn, "transactions", user_id)


def fetch_transactions_by_ids(
    conn: sqlite3.Connection, user_id: str, ids: Iterable[int]
) -> List[Transaction]:
    user_id = require_user(user_id)
    id_list = [int(i) for i in ids]
    if not id_list:
        return []
    rows = conn.execute(
        f"SELECT {_TX_COLUMNS} FROM transactions "
        f"WHERE user_id = ? AND id IN ({_placeholders(id_list)})",
        [user_id, *id_list],
    ).fetchall()
    return [_tx_from_row(r) for r in rows]


def delete_transactions(conn: sqlite3.Connection, user_id: str, ids: Iterable[int]) -> int:
    return _delete(conn, "transactions", user_id, ids)


def query_transactions(
    conn: sqlite3.Connection,
    user_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    kind: str | None = None,
    category: str | None = None,
    newest_first: bool = False,
    limit: int | None = None,
) -> List[Transaction]:
    """Return the user's transactions matching the optional filters.

    Parameters
    ----------
    start_date, end_date:
        Inclusive calendar bounds.
    kind:
        ``"income"`` or ``"expense"``.
    category:
        Exact category name.
    newest_first:
        Order by date descending instead of ascending.
    limit:
        Maximum number of rows to return.
    """
    user_id = require_user(user_id)
    where, params = _build_filters(user_id, start_date, end_date, kind, category)
    direction = "DESC" if newest_first else "ASC"
    query = f"SELECT {_TX_COLUMNS} FROM transactions{where} ORDER BY date {direction}, id {direction}"
    if limit is not None:
        query += " LIMIT ?"
        params.append(int(limit))
    rows = conn.execute(query, params).fetchall()
    return [_tx_from_row(r) for r in rows]


def sum_by_category(
    conn: sqlite3.Connection,
    user_id: str,
    kind: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> Dict[str, float]:
    user_id = require_user(user_id)
    where, params = _build_filters(user_id, start_date, end_date, kind, None)
    rows = conn.execute(
        f"""
        SELECT category, COALESCE(SUM(amount), 0.0) AS total
        FROM transactions
        {where}
        GROUP BY category
        """,
        params,
    ).fetchall()
    return {row["category"]: float(row["total"] or 0.0) for row in rows}


# -----------------------------------------------------------------------------
# Savings goals
# -----------------------------------------------------------------------------

_GOAL_COLUMNS = "id, user_id, name, target_amount, current_amount, deadline, color, icon"


def _goal_from_row(row: sqlite3.Row) -> SavingsGoal:
    return SavingsGoal(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        target_amount=float(row["target_amount"]),
        current_amount=float(row["current_amount"]),
        deadline=_from_iso(row["deadline"]),
        color=row["color"],
        icon=row["icon"],
    )


def insert_goal(conn: sqlite3.Connection, user_id: str, goal: SavingsGoal) -> int:
    user_id = require_user(user_id)
    cur = conn.execute(
        """
        INSERT INTO savings
        (user_id, name, target_amount, current_amount, deadline, color, icon)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            goal.name,
            float(goal.target_amount),
            float(goal.current_amount),
            _iso(goal.deadline),
            goal.color,
            goal.icon,
        ),
    )
    goal.id = cur.lastrowid
    goal.user_id = user_id
    _touch(conn, "savings", user_id)
    return goal.id


def get_goal(conn: sqlite3.Connection, user_id: str, goal_id: int) -> SavingsGoal | None:
    user_id = require_user(user_id)
    row = conn.execute(
        f"SELECT {_GOAL_COLUMNS} FROM savings WHERE user_id = ? AND id = ?",
        (user_id, goal_id),
    ).fetchone()
    return _goal_from_row(row) if row else None


def replace_goal(conn: sqlite3.Connection, user_id: str, goal: SavingsGoal) -> None:
    user_id = require_user(user_id)
    cur = conn.execute(
        """
        UPDATE savings
        SET name = ?, target_amount = ?, current_amount = ?, deadline = ?,
            color = ?, icon = ?
        WHERE user_id = ? AND id = ?
        """,
        (
            goal.name,
            float(goal.target_amount),
            float(goal.current_amount),
            _iso(goal.deadline),
            goal.color,
            goal.icon,
            user_id,
            goal.id,
        ),
    )
    if cur.rowcount == 0:
        raise NotFound("SavingsGoal", goal.id)
    goal.user_id = user_id
    _touch(conn, "savings", user_id)


def adjust_goal(conn: sqlite3.Connection, user_id: str, goal_id: int, delta: float) -> bool:
    """Add ``delta`` to a goal's current amount; False if the goal is gone."""
    user_id = require_user(user_id)
    cur = conn.execute(
        "UPDATE savings SET current_amount = current_amount + ? WHERE user_id = ? AND id = ?",
        (float(delta), user_id, goal_id),
    )
    if cur.rowcount:
        _touch(conn, "savings", user_id)
    return bool(cur.rowcount)


def delete_goals(conn: sqlite3.Connection, user_id: str, ids: Iterable[int]) -> int:
    return _delete(conn, "savings", user_id, ids)


def fetch_goals(conn: sqlite3.Connection, user_id: str) -> List[SavingsGoal]:
    user_id = require_user(user_id)
    rows = conn.execute(
        f"SELECT {_GOAL_COLUMNS} FROM savings WHERE user_id = ? ORDER BY id",
        (user_id,),
    ).fetchall()
    return [_goal_from_row(r) for r in rows]


# -----------------------------------------------------------------------------
# Budgets
# -----------------------------------------------------------------------------

def _budget_from_row(row: sqlite3.Row) -> Budget:
    return Budget(
        id=row["id"],
        user_id=row["user_id"],
        category=row["category"],
        limit=float(row["amount_limit"]),
        period=row["period"],
    )


def insert_budget(conn: sqlite3.Connection, user_id: str, budget: Budget) -> int:
    user_id = require_user(user_id)
    cur = conn.execute(
        "INSERT INTO budgets (user_id, category, amount_limit, period) VALUES (?, ?, ?, ?)",
        (user_id, budget.category, float(budget.limit), budget.period),
    )
    budget.id = cur.lastrowid
    budget.user_id = user_id
    _touch(conn, "budgets", user_id)
    return budget.id


def find_budget(conn: sqlite3.Connection, user_id: str, category: str) -> Budget | None:
    user_id = require_user(user_id)
    row = conn.execute(
        "SELECT id, user_id, category, amount_limit, period FROM budgets "
        "WHERE user_id = ? AND category = ?",
        (user_id, category),
    ).fetchone()
    return _budget_from_row(row) if row else None


def replace_budget(conn: sqlite3.Connection, user_id: str, budget: Budget) -> None:
    user_id = require_user(user_id)
    cur = conn.execute(
        "UPDATE budgets SET category = ?, amount_limit = ?, period = ? "
        "WHERE user_id = ? AND id = ?",
        (budget.category, float(budget.limit), budget.period, user_id, budget.id),
    )
    if cur.rowcount == 0:
        raise NotFound("Budget", budget.id)
    budget.user_id = user_id
    _touch(conn, "budgets", user_id)


def delete_budgets(conn: sqlite3.Connection, user_id: str, ids: Iterable[int]) -> int:
    return _delete(conn, "budgets", user_id, ids)


def fetch_budgets(conn: sqlite3.Connection, user_id: str) -> List[Budget]:
    user_id = require_user(user_id)
    rows = conn.execute(
        "SELECT id, user_id, category, amount_limit, period FROM budgets "
        "WHERE user_id = ? ORDER BY category",
        (user_id,),
    ).fetchall()
    return [_budget_from_row(r) for r in rows]


# -----------------------------------------------------------------------------
# Recurring rules
# -----------------------------------------------------------------------------

_RECURRING_COLUMNS = "id, user_id, title, amount, kind, category, frequency, next_due_date, active, anchor_day"


def _recurring_from_row(row: sqlite3.Row) -> RecurringTransaction:
    next_due_date = date.fromisoformat(row["next_due_date"])
    return RecurringTransaction(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        amount=float(row["amount"]),
        kind=row["kind"],
        category=row["category"],
        frequency=row["frequency"],
        next_due_date=next_due_date,
        active=bool(row["active"]),
        anchor_day=row["anchor_day"] or next_due_date.day,
    )


def _recurring_values(rule: RecurringTransaction) -> tuple:
    return (
        rule.title,
        float(rule.amount),
        rule.kind,
        rule.category,
        rule.frequency,
        rule.next_due_date.isoformat(),
        int(bool(rule.active)),
        rule.anchor_day or rule.next_due_date.day,
    )


def insert_recurring(conn: sqlite3.Connection, user_id: str, rule: RecurringTransaction) -> int:
    user_id = require_user(user_id)
    cur = conn.execute(
        """
        INSERT INTO recurring
        (user_id, title, amount, kind, category, frequency, next_due_date, active, anchor_day)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, *_recurring_values(rule)),
    )
    rule.id = cur.lastrowid
    rule.user_id = user_id
    rule.anchor_day = rule.anchor_day or rule.next_due_date.day
    _touch(conn, "recurring", user_id)
    return rule.id


def get_recurring(conn: sqlite3.Connection, user_id: str, rule_id: int) -> RecurringTransaction | None:
    user_id = require_user(user_id)
    row = conn.execute(
        f"SELECT {_RECURRING_COLUMNS} FROM recurring WHERE user_id = ? AND id = ?",
        (user_id, rule_id),
    ).fetchone()
    return _recurring_from_row(row) if row else None


def replace_recurring(conn: sqlite3.Connection, user_id: str, rule: RecurringTransaction) -> None:
    user_id = require_user(user_id)
    cur = conn.execute(
        """
        UPDATE recurring
        SET title = ?, amount = ?, kind = ?, category = ?, frequency = ?,
            next_due_date = ?, active = ?, anchor_day = ?
        WHERE user_id = ? AND id = ?
        """,
        (*_recurring_values(rule), user_id, rule.id),
    )
    if cur.rowcount == 0:
        raise NotFound("RecurringTransaction", rule.id)
    rule.user_id = user_id
    _touch(conn, "recurring", user_id)


def set_next_due_date(conn: sqlite3.Connection, user_id: str, rule_id: int, due: date) -> None:
    user_id = require_user(user_id)
    cur = conn.execute(
        "UPDATE recurring SET next_due_date = ? WHERE user_id = ? AND id = ?",
        (due.isoformat(), user_id, rule_id),
    )
    if cur.rowcount == 0:
        raise NotFound("RecurringTransaction", rule_id)
    _touch(conn, "recurring", user_id)


def delete_recurring(conn: sqlite3.Connection, user_id: str, ids: Iterable[int]) -> int:
    return _delete(conn, "recurring", user_id, ids)


def fetch_recurring(
    conn: sqlite3.Connection,
    user_id: str,
    active_only: bool = False,
    kind: str | None = None,
) -> List[RecurringTransaction]:
    user_id = require_user(user_id)
    query = f"SELECT {_RECURRING_COLUMNS} FROM recurring WHERE user_id = ?"
    params: list = [user_id]
    if active_only:
        query += " AND active = 1"
    if kind:
        query += " AND kind = ?"
        params.append(kind)
    query += " ORDER BY next_due_date, id"
    rows = conn.execute(query, params).fetchall()
    return [_recurring_from_row(r) for r in rows]


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------

def _category_from_row(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        kind=row["kind"],
        is_default=bool(row["is_default"]),
    )


def count_categories(conn: sqlite3.Connection, user_id: str) -> int:
    user_id = require_user(user_id)
    row = conn.execute(
        "SELECT COUNT(*) FROM categories WHERE user_id = ?", (user_id,)
    ).fetchone()
    return int(row[0] or 0)


def insert_categories(
    conn: sqlite3.Connection, user_id: str, categories: Iterable[Category]
) -> List[int]:
    user_id = require_user(user_id)
    ids = []
    for cat in categories:
        cur = conn.execute(
            "INSERT INTO categories (user_id, name, kind, is_default) VALUES (?, ?, ?, ?)",
            (user_id, cat.name, cat.kind, int(bool(cat.is_default))),
        )
        cat.id = cur.lastrowid
        cat.user_id = user_id
        ids.append(cat.id)
    if ids:
        _touch(conn, "categories", user_id)
    return ids


def get_category(conn: sqlite3.Connection, user_id: str, category_id: int) -> Category | None:
    user_id = require_user(user_id)
    row = conn.execute(
        "SELECT id, user_id, name, kind, is_default FROM categories WHERE user_id = ? AND id = ?",
        (user_id, category_id),
    ).fetchone()
    return _category_from_row(row) if row else None


def find_category(conn: sqlite3.Connection, user_id: str, name: str, kind: str) -> Category | None:
    user_id = require_user(user_id)
    row = conn.execute(
        "SELECT id, user_id, name, kind, is_default FROM categories "
        "WHERE user_id = ? AND name = ? AND kind = ?",
        (user_id, name, kind),
    ).fetchone()
    return _category_from_row(row) if row else None


def fetch_categories(conn: sqlite3.Connection, user_id: str, kind: str | None = None) -> List[Category]:
    user_id = require_user(user_id)
    query = "SELECT id, user_id, name, kind, is_default FROM categories WHERE user_id = ?"
    params: list = [user_id]
    if kind:
        query += " AND kind = ?"
        params.append(kind)
    query += " ORDER BY kind, id"
    rows = conn.execute(query, params).fetchall()
    return [_category_from_row(r) for r in rows]


def delete_categories(conn: sqlite3.Connection, user_id: str, ids: Iterable[int]) -> int:
    return _delete(conn, "categories", user_id, ids)
