from __future__ import annotations

import copy
from pathlib import Path
from typing import Dict

import yaml

DEFAULT_CONFIG: Dict[str, object] = {
    "db_path": "smartledger.db",
    "log_level": "INFO",
    "ledger": {
        # Undo a linked goal's adjustment when its transaction is deleted.
        "reverse_goal_on_delete": True,
    },
    "recurring": {
        "run_on_start": True,
    },
    "output_dir": "./data",
    "output_modules": {
        "csv": "ledger_tracker.outputs.csv_output.CSVOutput",
        "json": "ledger_tracker.outputs.json_output.JSONBackupOutput",
    },
}


def _merge_defaults(current: Dict[str, object], defaults: Dict[str, object]) -> Dict[str, object]:
    """Merge missing default keys into the current config recursively."""
    merged = dict(current)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
    return merged


def load_config(path: str | Path | None = None) -> Dict[str, object]:
    """Load a YAML config file layered over :data:`DEFAULT_CONFIG`.

    A missing path (or no path) yields a copy of the defaults.
    """
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    target = Path(path)
    if not target.exists():
        return copy.deepcopy(DEFAULT_CONFIG)
    with target.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {target} must contain a mapping")
    return _merge_defaults(data, DEFAULT_CONFIG)


def save_config(config: Dict[str, object], path: str | Path) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fp:
        yaml.safe_dump(config, fp, sort_keys=False)
