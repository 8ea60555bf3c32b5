# ledger_tracker/outputs/json_output.py

"""Full JSON backup of every ledger collection for one user."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from datetime import date, datetime, timezone

from ledger_tracker.outputs.base import BaseOutput

logger = logging.getLogger(__name__)


def _default(value):
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Cannot serialise {type(value).__name__}")


class JSONBackupOutput(BaseOutput):
    def __init__(self, config: dict):
        self.config = config
        self.output_dir = config.get("output_dir", "data")
        os.makedirs(self.output_dir, exist_ok=True)

    def write(self, snapshot, user_id):
        payload = {
            name: [asdict(record) for record in records]
            for name, records in snapshot.items()
        }
        payload["user_id"] = user_id
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()

        out_path = os.path.join(self.output_dir, f"ledger-backup-{date.today().isoformat()}.json")
        with open(out_path, "w", encoding="utf-8") as fp:
            json.dump(payload, fp, indent=2, default=_default)

        logger.info("Backed up %s to %s", ", ".join(sorted(snapshot)), out_path)
        return out_path
