from __future__ import annotations

import logging
from typing import List

from ledger_tracker import database as db
from ledger_tracker.core.errors import ValidationFailure
from ledger_tracker.core.models import EXPENSE, INCOME, KINDS, Category
from ledger_tracker.core.validation import require_choice, require_text
from ledger_tracker.session import LedgerSession

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Other"

DEFAULT_EXPENSE_CATEGORIES = [
    "Food & Dining", "Groceries", "Transport", "Fuel", "Utilities",
    "Rent/Housing", "Entertainment", "Healthcare", "Shopping",
    "Personal Care", "Education", "Insurance", "Subscriptions",
    "Gifts & Donations", "Family", "Pets", "Travel", "Debt Payment",
    "Maintenance", "Electronics", "Other",
]

DEFAULT_INCOME_CATEGORIES = [
    "Salary", "Freelance", "Business Profit", "Bonus",
    "Investments", "Dividends", "Rental Income", "Gifts",
    "Refunds", "Grants", "Pension", "Other",
]


def seed_categories(session: LedgerSession) -> int:
    """Populate the default categories for a user that has none.

    Returns the number of categories created (0 when already seeded).
    """
    user_id = session.user_id
    with session.connect() as conn:
        if db.count_categories(conn, user_id):
            return 0
        batch = [Category(name, EXPENSE, is_default=True) for name in DEFAULT_EXPENSE_CATEGORIES]
        batch += [Category(name, INCOME, is_default=True) for name in DEFAULT_INCOME_CATEGORIES]
        db.insert_categories(conn, user_id, batch)
    logger.info("Seeded %d default categories for %s", len(batch), user_id)
    return len(batch)


def list_categories(session: LedgerSession, kind: str | None = None) -> List[Category]:
    with session.connect() as conn:
        return db.fetch_categories(conn, session.user_id, kind)


def add_category(session: LedgerSession, name: str, kind: str) -> int:
    """Create a user category, returning the existing id on a duplicate."""
    name = require_text(name, "name")
    kind = require_choice(kind, KINDS, "kind")
    user_id = session.user_id
    with session.connect() as conn:
        existing = db.find_category(conn, user_id, name, kind)
        if existing:
            return existing.id
        (cat_id,) = db.insert_categories(conn, user_id, [Category(name, kind)])
        return cat_id


def delete_category(session: LedgerSession, category_id: int) -> None:
    """Delete a user-created category. Unknown ids are ignored."""
    user_id = session.user_id
    with session.connect() as conn:
        existing = db.get_category(conn, user_id, category_id)
        if existing is None:
            return
        if existing.is_default:
            raise ValidationFailure("category", f"'{existing.name}' is a default category")
        db.delete_categories(conn, user_id, [category_id])


def resolve_category(conn, user_id: str, name: str | None, kind: str) -> str:
    """Return ``name`` if the user owns such a category, else ``"Other"``."""
    if name and db.find_category(conn, user_id, name, kind):
        return name
    if name:
        logger.debug("Category %r (%s) unknown for %s, using %s", name, kind, user_id, FALLBACK_CATEGORY)
    return FALLBACK_CATEGORY
