import threading
from datetime import date

import pytest

from ledger_tracker import ledger
from ledger_tracker.core.errors import NotAuthenticated, NotFound, ValidationFailure
from ledger_tracker.core.models import EXPENSE, INCOME, SavingsGoal, Transaction
from ledger_tracker.session import LedgerSession


def _goal(session, name="House", target=1_000_000, current=0.0):
    return ledger.add_goal(session, SavingsGoal(name=name, target_amount=target, current_amount=current))


def _tx(amount, kind=EXPENSE, goal_id=None, title="Transfer", on=date(2025, 5, 1)):
    return Transaction(
        title=title, amount=amount, kind=kind, category="Other", date=on, savings_goal_id=goal_id
    )


def _balance(session, goal_id):
    return ledger.get_goal(session, goal_id).current_amount


def test_edit_amount_replaces_goal_adjustment(session):
    goal_id = _goal(session)
    tx = _tx(200_000, goal_id=goal_id)
    ledger.add_transaction(session, tx)
    assert _balance(session, goal_id) == 200_000

    tx.amount = 50_000
    ledger.update_transaction(session, tx)
    assert _balance(session, goal_id) == 50_000


def test_sign_convention(session):
    goal_id = _goal(session, current=500)
    ledger.add_transaction(session, _tx(120, EXPENSE, goal_id))
    ledger.add_transaction(session, _tx(20, INCOME, goal_id))
    assert _balance(session, goal_id) == 600


def test_goal_balances_follow_interleaved_edits(session):
    a = _goal(session, "A")
    b = _goal(session, "B")
    t1 = _tx(100, EXPENSE, a)
    t2 = _tx(30, INCOME, a)
    t3 = _tx(50, EXPENSE, b)
    t4 = _tx(20, EXPENSE, a)
    for tx in (t1, t3, t2, t4):
        ledger.add_transaction(session, tx)

    t2.amount = 40
    ledger.update_transaction(session, t2)
    t3.kind = INCOME
    ledger.update_transaction(session, t3)

    assert _balance(session, a) == 100 - 40 + 20
    assert _balance(session, b) == -50


def test_relink_moves_adjustment_between_goals(session):
    a = _goal(session, "A")
    b = _goal(session, "B")
    c = _goal(session, "C", current=5)
    tx = _tx(100, EXPENSE, a)
    ledger.add_transaction(session, tx)

    tx.savings_goal_id = b
    ledger.update_transaction(session, tx)

    assert _balance(session, a) == 0
    assert _balance(session, b) == 100
    assert _balance(session, c) == 5


def test_unlinking_reverses_adjustment(session):
    a = _goal(session, "A")
    tx = _tx(100, EXPENSE, a)
    ledger.add_transaction(session, tx)

    tx.savings_goal_id = None
    ledger.update_transaction(session, tx)
    assert _balance(session, a) == 0


def test_delete_reverses_goal_adjustment(session):
    a = _goal(session, "A")
    keep = _tx(10, EXPENSE, a)
    drop = _tx(100, EXPENSE, a)
    ledger.add_transaction(session, keep)
    ledger.add_transaction(session, drop)

    assert ledger.delete_transactions(session, [drop.id]) == 1
    assert _balance(session, a) == 10
    # deleting again is a no-op and does not reverse twice
    assert ledger.delete_transactions(session, [drop.id]) == 0
    assert _balance(session, a) == 10


def test_delete_without_reversal_keeps_legacy_drift(store):
    legacy = LedgerSession(store, "alice", {"ledger": {"reverse_goal_on_delete": False}})
    a = _goal(legacy, "A")
    tx = _tx(100, EXPENSE, a)
    ledger.add_transaction(legacy, tx)

    ledger.delete_transaction(legacy, tx.id)
    assert ledger.get_transaction(legacy, tx.id) is None
    assert _balance(legacy, a) == 100


def test_bulk_delete_twice_excludes_exactly_those_ids(session):
    ids = [ledger.add_transaction(session, _tx(i + 1, title=f"t{i}")) for i in range(4)]

    ledger.delete_transactions(session, ids[:2])
    ledger.delete_transactions(session, ids[:2])

    assert sorted(t.id for t in ledger.list_transactions(session)) == ids[2:]


def test_dangling_goal_reference_is_tolerated(session):
    a = _goal(session, "A")
    ledger.delete_goal(session, a)

    tx = _tx(100, EXPENSE, a)
    tx_id = ledger.add_transaction(session, tx)
    assert ledger.get_transaction(session, tx_id).savings_goal_id == a

    tx.amount = 80
    ledger.update_transaction(session, tx)
    ledger.delete_transaction(session, tx_id)
    assert ledger.list_goals(session) == []


def test_cannot_adjust_another_users_goal(store, session):
    bob = LedgerSession(store, "bob")
    a = _goal(session, "A")

    ledger.add_transaction(bob, _tx(100, EXPENSE, a))

    assert _balance(session, a) == 0
    assert ledger.list_transactions(session) == []


def test_invalid_transaction_leaves_no_partial_state(session):
    a = _goal(session, "A")
    with pytest.raises(ValidationFailure):
        ledger.add_transaction(session, _tx(-5, EXPENSE, a))
    with pytest.raises(ValidationFailure):
        ledger.add_transaction(session, _tx(5, "transfer", a))
    with pytest.raises(ValidationFailure):
        ledger.add_transaction(session, _tx(5, EXPENSE, a, title="   "))

    assert ledger.list_transactions(session) == []
    assert _balance(session, a) == 0


def test_invalid_edit_keeps_previous_state(session):
    a = _goal(session, "A")
    tx = _tx(100, EXPENSE, a)
    ledger.add_transaction(session, tx)

    tx.amount = 0
    with pytest.raises(ValidationFailure):
        ledger.update_transaction(session, tx)

    assert ledger.get_transaction(session, tx.id).amount == 100
    assert _balance(session, a) == 100


def test_update_unknown_transaction_raises(session):
    ghost = _tx(10)
    with pytest.raises(NotFound):
        ledger.update_transaction(session, ghost)
    ghost.id = 42
    with pytest.raises(NotFound):
        ledger.update_transaction(session, ghost)


def test_commands_require_a_user(store):
    anonymous = LedgerSession(store)
    with pytest.raises(NotAuthenticated):
        ledger.add_transaction(anonymous, _tx(10))
    with pytest.raises(NotAuthenticated):
        ledger.add_goal(anonymous, SavingsGoal(name="A", target_amount=10))

    anonymous.set_user("carol")
    assert ledger.add_transaction(anonymous, _tx(10))


def test_unknown_category_falls_back_to_other(session):
    tx = _tx(10)
    tx.category = "Made Up"
    ledger.add_transaction(session, tx)
    salary_as_expense = _tx(10)
    salary_as_expense.category = "Salary"
    ledger.add_transaction(session, salary_as_expense)
    groceries = _tx(10)
    groceries.category = "Groceries"
    ledger.add_transaction(session, groceries)

    assert tx.category == "Other"
    assert salary_as_expense.category == "Other"
    assert groceries.category == "Groceries"


def test_direct_funding_creates_no_transaction(session):
    a = _goal(session, "A")
    assert ledger.fund_goal(session, a, 250) is None
    assert _balance(session, a) == 250
    assert ledger.list_transactions(session) == []


def test_funding_as_expense_counts_once(session):
    a = _goal(session, "Trip")
    tx_id = ledger.fund_goal(session, a, 250, record_expense=True, on=date(2025, 5, 3))

    assert _balance(session, a) == 250
    (tx,) = ledger.list_transactions(session)
    assert tx.id == tx_id
    assert tx.kind == EXPENSE
    assert tx.category == "Savings"
    assert tx.title == "Savings: Trip"
    assert tx.savings_goal_id == a


def test_funding_missing_goal_raises(session):
    with pytest.raises(NotFound):
        ledger.fund_goal(session, 99, 10)
    with pytest.raises(ValidationFailure):
        ledger.fund_goal(session, _goal(session), 0)


def test_goal_completion_is_not_clamped(session):
    a = _goal(session, "A", target=100)
    ledger.fund_goal(session, a, 150)
    goal = ledger.get_goal(session, a)
    assert goal.current_amount == 150
    assert goal.is_completed
    assert goal.progress == 1.5


def test_update_goal_requires_existing_row(session):
    goal = SavingsGoal(name="Ghost", target_amount=10, id=77)
    with pytest.raises(NotFound):
        ledger.update_goal(session, goal)

    a = _goal(session, "A")
    goal = ledger.get_goal(session, a)
    goal.name = "Emergency fund"
    ledger.update_goal(session, goal)
    assert ledger.get_goal(session, a).name == "Emergency fund"


def test_concurrent_linked_writes_are_serialised(session):
    a = _goal(session, "A")

    def worker(kind):
        for _ in range(25):
            ledger.add_transaction(session, _tx(2, kind, a))

    threads = [threading.Thread(target=worker, args=(k,)) for k in (EXPENSE, EXPENSE, INCOME)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert _balance(session, a) == 25 * 2 + 25 * 2 - 25 * 2
    assert len(ledger.list_transactions(session)) == 75


def test_deleted_ids_are_never_reused(session):
    old = _goal(session, "Old")
    stale = _tx(40, EXPENSE, old)
    ledger.add_transaction(session, stale)
    ledger.delete_goal(session, old)

    new = _goal(session, "New")
    assert new != old

    ledger.delete_transaction(session, stale.id)
    assert _balance(session, new) == 0

    fresh_id = ledger.add_transaction(session, _tx(5))
    assert fresh_id != stale.id
    assert ledger.delete_transactions(session, [stale.id]) == 0
    assert ledger.get_transaction(session, fresh_id) is not None
