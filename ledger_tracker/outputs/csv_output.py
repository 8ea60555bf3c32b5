# ledger_tracker/outputs/csv_output.py

import csv
import logging
import os
from datetime import date
from decimal import Decimal

from ledger_tracker.outputs.base import BaseOutput

logger = logging.getLogger(__name__)


class CSVOutput(BaseOutput):
    """
    Writes the user's ledger, newest first, to ledger-export-<date>.csv
    in the configured output directory.
    """
    HEADERS = ['Date', 'Title', 'Type', 'Category', 'Amount', 'Notes']

    def __init__(self, config):
        self.config     = config
        self.output_dir = config.get('output_dir', 'data')
        os.makedirs(self.output_dir, exist_ok=True)

    def write(self, snapshot, user_id):
        transactions = snapshot.get('transactions', [])
        filename = f"ledger-export-{date.today().isoformat()}.csv"
        out_path = os.path.join(self.output_dir, filename)

        with open(out_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(self.HEADERS)
            for tx in transactions:
                writer.writerow([
                    tx.date.isoformat(),
                    tx.title,
                    tx.kind,
                    tx.category,
                    f"{Decimal(str(tx.amount)):.2f}",
                    tx.notes or '',
                ])

        logger.info("Written %d transactions for %s to %s", len(transactions), user_id, out_path)
        return out_path
