import sqlite3
from datetime import date

import pytest

from ledger_tracker import database as db
from ledger_tracker.core.errors import NotAuthenticated, NotFound
from ledger_tracker.core.models import Budget, Category, SavingsGoal, Transaction


def _tx(title="Coffee", amount=3.5, kind="expense", on=date(2025, 5, 1), goal=None):
    return Transaction(
        title=title, amount=amount, kind=kind, category="Other", date=on, savings_goal_id=goal
    )


def test_insert_assigns_identity_and_owner(store):
    with store.connect() as conn:
        tx = _tx()
        tx_id = db.insert_transaction(conn, "alice", tx)
        stored = db.get_transaction(conn, "alice", tx_id)

    assert tx_id == tx.id
    assert stored.user_id == "alice"
    assert stored.date == date(2025, 5, 1)
    assert stored.amount == 3.5


def test_rows_are_scoped_to_their_owner(store):
    with store.connect() as conn:
        tx_id = db.insert_transaction(conn, "alice", _tx())
        db.insert_transaction(conn, "bob", _tx(title="Book"))

        assert db.get_transaction(conn, "bob", tx_id) is None
        assert [t.title for t in db.query_transactions(conn, "bob")] == ["Book"]
        # bob cannot delete or adjust alice's rows
        assert db.delete_transactions(conn, "bob", [tx_id]) == 0
        assert db.get_transaction(conn, "alice", tx_id) is not None


def test_missing_user_fails_before_writing(store):
    with store.connect() as conn:
        with pytest.raises(NotAuthenticated):
            db.insert_transaction(conn, "", _tx())
        with pytest.raises(NotAuthenticated):
            db.query_transactions(conn, None)
        assert conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0] == 0


def test_update_missing_identity_raises_not_found(store):
    with store.connect() as conn:
        ghost = _tx()
        ghost.id = 999
        with pytest.raises(NotFound):
            db.replace_transaction(conn, "alice", ghost)
        with pytest.raises(NotFound):
            db.replace_goal(conn, "alice", SavingsGoal(name="x", target_amount=1, id=5))
        with pytest.raises(NotFound):
            db.replace_budget(conn, "alice", Budget(category="Food", limit=1, id=5))


def test_bulk_delete_is_idempotent(store):
    with store.connect() as conn:
        ids = [db.insert_transaction(conn, "alice", _tx(title=f"t{i}")) for i in range(3)]

    for _ in range(2):
        with store.connect() as conn:
            db.delete_transactions(conn, "alice", ids[:2] + [12345])

    with store.connect() as conn:
        remaining = db.query_transactions(conn, "alice")
    assert [t.id for t in remaining] == [ids[2]]


def test_query_filters_and_ordering(store):
    with store.connect() as conn:
        db.insert_transaction(conn, "alice", _tx(title="old", on=date(2025, 4, 30)))
        db.insert_transaction(conn, "alice", _tx(title="pay", kind="income", on=date(2025, 5, 2)))
        db.insert_transaction(conn, "alice", _tx(title="new", on=date(2025, 5, 9)))

        may = db.query_transactions(conn, "alice", date(2025, 5, 1), date(2025, 5, 31))
        newest = db.query_transactions(conn, "alice", newest_first=True, limit=2)
        expenses = db.query_transactions(conn, "alice", kind="expense")

    assert [t.title for t in may] == ["pay", "new"]
    assert [t.title for t in newest] == ["new", "pay"]
    assert [t.title for t in expenses] == ["old", "new"]


def test_adjust_goal_reports_missing_goal(store):
    with store.connect() as conn:
        goal_id = db.insert_goal(conn, "alice", SavingsGoal(name="Trip", target_amount=500))
        assert db.adjust_goal(conn, "alice", goal_id, 25.0)
        assert not db.adjust_goal(conn, "alice", goal_id + 1, 25.0)
        assert not db.adjust_goal(conn, "bob", goal_id, 25.0)
        assert db.get_goal(conn, "alice", goal_id).current_amount == 25.0


def test_unit_of_work_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        with store.connect() as conn:
            db.insert_transaction(conn, "alice", _tx())
            raise RuntimeError("boom")

    with store.connect() as conn:
        assert db.query_transactions(conn, "alice") == []


def test_nested_connect_joins_outer_unit(store):
    with pytest.raises(RuntimeError):
        with store.connect() as outer:
            with store.connect() as inner:
                assert inner is outer
                db.insert_transaction(inner, "alice", _tx())
            raise RuntimeError("boom")

    with store.connect() as conn:
        assert db.query_transactions(conn, "alice") == []


def test_budget_and_category_uniqueness(store):
    with store.connect() as conn:
        db.insert_budget(conn, "alice", Budget(category="Food", limit=100))
        db.insert_budget(conn, "bob", Budget(category="Food", limit=100))
        db.insert_categories(conn, "alice", [Category("Coffee", "expense")])
        db.insert_categories(conn, "alice", [Category("Coffee", "income")])

    with pytest.raises(sqlite3.IntegrityError):
        with store.connect() as conn:
            db.insert_budget(conn, "alice", Budget(category="Food", limit=50))
    with pytest.raises(sqlite3.IntegrityError):
        with store.connect() as conn:
            db.insert_categories(conn, "alice", [Category("Coffee", "expense")])


def test_listeners_fire_after_commit_only(store):
    seen = []
    unsubscribe = store.subscribe("transactions", lambda coll, user: seen.append((coll, user)))

    with store.connect() as conn:
        db.insert_transaction(conn, "alice", _tx())
    assert seen == [("transactions", "alice")]

    with pytest.raises(RuntimeError):
        with store.connect() as conn:
            db.insert_transaction(conn, "alice", _tx())
            raise RuntimeError("boom")
    assert len(seen) == 1

    unsubscribe()
    with store.connect() as conn:
        db.insert_transaction(conn, "alice", _tx())
    assert len(seen) == 1


def test_subscribe_rejects_unknown_collection(store):
    with pytest.raises(ValueError):
        store.subscribe("wallets", lambda *_: None)
