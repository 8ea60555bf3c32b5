# ledger_tracker/core/models.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal

INCOME = "income"
EXPENSE = "expense"
KINDS = (INCOME, EXPENSE)

WEEKLY = "weekly"
MONTHLY = "monthly"
FREQUENCIES = (WEEKLY, MONTHLY)

Kind = Literal["income", "expense"]
Frequency = Literal["weekly", "monthly"]


@dataclass
class Transaction:
    title: str
    amount: float
    kind: Kind
    category: str
    date: date
    notes: str | None = None
    attachment: str | None = None
    savings_goal_id: int | None = None
    id: int | None = None
    user_id: str | None = None

    @property
    def goal_adjustment(self) -> float:
        """Signed delta this transaction applies to its linked goal.

        An expense moves money from the wallet into the goal; an income
        withdraws it back out.
        """
        return self.amount if self.kind == EXPENSE else -self.amount


@dataclass
class SavingsGoal:
    name: str
    target_amount: float
    current_amount: float = 0.0
    deadline: date | None = None
    color: str = "#8b5cf6"
    icon: str | None = None
    id: int | None = None
    user_id: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.current_amount >= self.target_amount

    @property
    def progress(self) -> float:
        if self.target_amount <= 0:
            return 0.0
        return self.current_amount / self.target_amount


@dataclass
class Budget:
    category: str
    limit: float
    period: Literal["monthly", "weekly"] = MONTHLY
    id: int | None = None
    user_id: str | None = None


@dataclass
class BudgetStatus:
    """A budget together with its spend for the current month."""

    budget: Budget
    spent: float

    @property
    def remaining(self) -> float:
        return max(0.0, self.budget.limit - self.spent)

    @property
    def ratio(self) -> float:
        if self.budget.limit <= 0:
            return 0.0
        return self.spent / self.budget.limit

    @property
    def over_limit(self) -> bool:
        return self.spent > self.budget.limit


@dataclass
class RecurringTransaction:
    title: str
    amount: float
    kind: Kind
    category: str
    frequency: Frequency
    next_due_date: date
    active: bool = True
    # Day of month a monthly rule falls on; short months clamp without moving it.
    anchor_day: int | None = None
    id: int | None = None
    user_id: str | None = None


@dataclass
class Category:
    name: str
    kind: Kind
    is_default: bool = False
    id: int | None = None
    user_id: str | None = None


@dataclass
class TransactionSuggestion:
    """Best-effort fields extracted by an AI parser.

    Every field is optional; nothing here is trusted until it has been
    confirmed and coerced into a :class:`Transaction`.
    """

    title: str | None = None
    amount: float | None = None
    kind: str | None = None
    category: str | None = None
    date: date | None = None
