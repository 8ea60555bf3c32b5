"""SmartLedger: a personal finance ledger with savings goals, budgets and recurring bills."""

__version__ = "0.1.0"
