"""Persisted allow/deny decisions per (table, role, operation)."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .models import LedgerEntry, ledger_key


def sort_ledger(ledger: list[LedgerEntry]) -> list[LedgerEntry]:
    ledger.sort(key=LedgerEntry.sort_key)
    return ledger


def sync_ledger(matrix: dict[str, Any], ledger: list[LedgerEntry]) -> tuple[list[LedgerEntry], int]:
    """Add an undecided entry for every matrix operation the ledger lacks.

    Existing entries, decided or not, are never removed or rewritten. Returns
    the sorted ledger and the number of entries added.
    """
    index = {entry.key: entry for entry in ledger}
    added = 0
    for table in matrix.get("tables", []):
        for op in table.get("operations") or []:
            key = ledger_key(table["table"], op["role"], op["operation"])
            if key in index:
                continue
            entry = LedgerEntry(table=table["table"], role=op["role"], operation=op["operation"])
            ledger.append(entry)
            index[key] = entry
            added += 1
    return sort_ledger(ledger), added


def baseline_ledger(matrix: dict[str, Any]) -> list[LedgerEntry]:
    """A fresh ledger with every matrix operation undecided."""
    ledger, _ = sync_ledger(matrix, [])
    return ledger


def load_ledger(path: Path) -> list[LedgerEntry]:
    """Read the ledger; a missing file is an empty ledger."""
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"ledger at {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigurationError(f"ledger at {path} must be a JSON array")
    try:
        return [LedgerEntry.from_dict(item) for item in data]
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"ledger at {path} has a malformed entry: {exc}") from exc


def save_ledger(path: Path, ledger: list[LedgerEntry]) -> None:
    """Overwrite the ledger file with the whole, sorted ledger."""
    sort_ledger(ledger)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [entry.to_dict() for entry in ledger]
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def require_ledger(path: Path) -> list[LedgerEntry]:
    """Like ``load_ledger`` but a missing file is a configuration error."""
    if not path.exists():
        raise ConfigurationError(f"ledger not found at {path}; run rls-expected-sync first")
    return load_ledger(path)
