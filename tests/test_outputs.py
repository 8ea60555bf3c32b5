import csv
import json
from datetime import date

import pytest

from ledger_tracker import ledger, reports
from ledger_tracker.config import load_config
from ledger_tracker.core.models import SavingsGoal, Transaction
from ledger_tracker.outputs import get_output
from ledger_tracker.outputs.csv_output import CSVOutput
from ledger_tracker.outputs.json_output import JSONBackupOutput


@pytest.fixture
def snapshot(session):
    ledger.add_transaction(
        session,
        Transaction(title="Pay", amount=2500, kind="income", category="Salary", date=date(2025, 5, 1)),
    )
    ledger.add_transaction(
        session,
        Transaction(
            title="Coffee, large", amount=3.1, kind="expense", category="Food & Dining",
            date=date(2025, 5, 3), notes="with Sam",
        ),
    )
    ledger.add_goal(session, SavingsGoal(name="Trip", target_amount=900, deadline=date(2025, 12, 1)))
    return reports.export_snapshot(session)


def test_csv_export(tmp_path, session, snapshot):
    out_path = CSVOutput({"output_dir": str(tmp_path / "out")}).write(snapshot, session.user_id)

    assert out_path.endswith(f"ledger-export-{date.today().isoformat()}.csv")
    with open(out_path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSVOutput.HEADERS
    assert rows[1] == ["2025-05-03", "Coffee, large", "expense", "Food & Dining", "3.10", "with Sam"]
    assert rows[2] == ["2025-05-01", "Pay", "income", "Salary", "2500.00", ""]


def test_json_backup(tmp_path, session, snapshot):
    out_path = JSONBackupOutput({"output_dir": str(tmp_path)}).write(snapshot, session.user_id)

    with open(out_path, encoding="utf-8") as fp:
        payload = json.load(fp)
    assert payload["user_id"] == session.user_id
    assert "timestamp" in payload
    assert [t["title"] for t in payload["transactions"]] == ["Coffee, large", "Pay"]
    assert payload["savings"][0]["deadline"] == "2025-12-01"
    assert len(payload["categories"]) == 33


def test_get_output_uses_configured_modules(tmp_path):
    config = load_config()
    config["output_dir"] = str(tmp_path)
    assert isinstance(get_output("csv", config), CSVOutput)
    assert isinstance(get_output("json", config), JSONBackupOutput)
    with pytest.raises(KeyError):
        get_output("excel", config)
