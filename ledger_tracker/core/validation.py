# ledger_tracker/core/validation.py
from __future__ import annotations

import math
from datetime import date, datetime

from ledger_tracker.core.errors import NotAuthenticated, ValidationFailure
from ledger_tracker.core.models import (
    FREQUENCIES,
    KINDS,
    Budget,
    RecurringTransaction,
    SavingsGoal,
    Transaction,
)


def require_user(user_id: str | None) -> str:
    if not user_id:
        raise NotAuthenticated()
    return user_id


def require_text(value, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationFailure(field, "must not be empty")
    return str(value).strip()


def require_positive(value, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationFailure(field, f"not a number: {value!r}") from None
    if math.isnan(number) or math.isinf(number) or number <= 0:
        raise ValidationFailure(field, "must be greater than 0")
    return number


def require_choice(value, choices, field: str) -> str:
    if value not in choices:
        raise ValidationFailure(field, f"must be one of {', '.join(choices)}")
    return value


def coerce_date(value, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            raise ValidationFailure(field, f"invalid date {value!r}") from None
    raise ValidationFailure(field, "is required")


def validate_transaction(tx: Transaction) -> Transaction:
    tx.title = require_text(tx.title, "title")
    tx.amount = require_positive(tx.amount, "amount")
    tx.kind = require_choice(tx.kind, KINDS, "kind")
    tx.date = coerce_date(tx.date, "date")
    if tx.category is not None:
        tx.category = str(tx.category).strip()
    return tx


def validate_goal(goal: SavingsGoal) -> SavingsGoal:
    goal.name = require_text(goal.name, "name")
    goal.target_amount = require_positive(goal.target_amount, "target_amount")
    goal.current_amount = float(goal.current_amount or 0.0)
    if goal.deadline is not None:
        goal.deadline = coerce_date(goal.deadline, "deadline")
    return goal


def validate_budget(budget: Budget) -> Budget:
    budget.category = require_text(budget.category, "category")
    budget.limit = require_positive(budget.limit, "limit")
    budget.period = require_choice(budget.period, ("monthly", "weekly"), "period")
    return budget


def validate_recurring(rule: RecurringTransaction) -> RecurringTransaction:
    rule.title = require_text(rule.title, "title")
    rule.amount = require_positive(rule.amount, "amount")
    rule.kind = require_choice(rule.kind, KINDS, "kind")
    rule.category = require_text(rule.category, "category")
    rule.frequency = require_choice(rule.frequency, FREQUENCIES, "frequency")
    rule.next_due_date = coerce_date(rule.next_due_date, "next_due_date")
    rule.active = bool(rule.active)
    if rule.anchor_day is not None and not 1 <= int(rule.anchor_day) <= 31:
        raise ValidationFailure("anchor_day", "must be between 1 and 31")
    return rule
