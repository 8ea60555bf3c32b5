import pytest

from ledger_tracker.database import LedgerStore
from ledger_tracker.session import LedgerSession

USER = "alice@example.com"


@pytest.fixture
def store(tmp_path):
    return LedgerStore(str(tmp_path / "ledger.db"))


@pytest.fixture
def session(store):
    return LedgerSession(store, USER)
