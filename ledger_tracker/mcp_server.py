from __future__ import annotations

from dataclasses import asdict
from datetime import date
from pathlib import Path

import anyio
from mcp.server.fastmcp import FastMCP

from ledger_tracker import budgets, reports
from ledger_tracker.database import LedgerStore
from ledger_tracker.session import LedgerSession

server = FastMCP(name="SmartLedger", instructions="Read-only views of a SmartLedger database")


def _session(db_path: str, user_id: str) -> LedgerSession:
    if not Path(db_path).exists():
        raise FileNotFoundError(f"Database not found: {db_path}")
    return LedgerSession(LedgerStore(db_path), user_id)


def _parse_today(value: str | None) -> date | None:
    try:
        return date.fromisoformat(value) if value else None
    except ValueError as exc:
        raise ValueError(f"Invalid today: {value}") from exc


def _jsonable(record: dict) -> dict:
    return {k: v.isoformat() if isinstance(v, date) else v for k, v in record.items()}


@server.tool(
    name="monthly_stats", description="Income, expense and savings rate for the current month"
)
async def monthly_stats(db_path: str, user_id: str, today: str | None = None) -> dict:
    """Return this month's totals for ``user_id``.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.
    user_id:
        Owner whose ledger is read.
    today:
        Optional ISO date used as "today".
    """
    on = _parse_today(today)
    session = _session(db_path, user_id)

    def _run() -> dict:
        stats = reports.monthly_stats(session, on)
        return {"income": stats.income, "expense": stats.expense, "savings_rate": stats.savings_rate}

    return await anyio.to_thread.run_sync(_run)


@server.tool(name="recent_transactions", description="Latest transactions, newest first")
async def recent_transactions(db_path: str, user_id: str, limit: int = 5) -> list[dict]:
    if limit < 0:
        raise ValueError("limit must not be negative")
    session = _session(db_path, user_id)

    def _run() -> list[dict]:
        txs = reports.recent_transactions(session, limit)
        return [_jsonable(asdict(t)) for t in txs]

    return await anyio.to_thread.run_sync(_run)


@server.tool(name="budget_overview", description="Budgets with this month's spend")
async def budget_overview(db_path: str, user_id: str, today: str | None = None) -> dict:
    on = _parse_today(today)
    session = _session(db_path, user_id)

    def _run() -> dict:
        overview = budgets.budget_overview(session, on)
        return {
            "budgets": [
                {"category": s.budget.category, "limit": s.budget.limit, "spent": s.spent}
                for s in overview.statuses
            ],
            "total_budgeted": overview.total_budgeted,
            "total_spent": overview.total_spent,
            "remaining": overview.remaining,
            "daily_safe_spend": overview.daily_safe_spend,
        }

    return await anyio.to_thread.run_sync(_run)


def main() -> None:
    server.run()


if __name__ == "__main__":
    main()
