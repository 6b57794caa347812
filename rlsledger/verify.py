"""Invariant checks over the matrix and ledger artifacts."""
from __future__ import annotations

from typing import Any, Iterable

from .errors import IntegrityViolation, LedgerVerificationError
from .models import LedgerEntry, ledger_key


def find_tables_without_operations(matrix: dict[str, Any]) -> list[str]:
    """RLS-enabled tables whose operation list is empty."""
    return [
        table["table"]
        for table in matrix.get("tables", [])
        if table.get("rls_enabled", True) and not table.get("operations")
    ]


def find_duplicate_operations(matrix: dict[str, Any]) -> list[str]:
    """``table|role|operation`` keys listed more than once within a table."""
    duplicates: list[str] = []
    for table in matrix.get("tables", []):
        seen: set[tuple[str, str]] = set()
        for op in table.get("operations") or []:
            pair = (op["role"], op["operation"])
            if pair in seen:
                key = ledger_key(table["table"], *pair)
                if key not in duplicates:
                    duplicates.append(key)
            seen.add(pair)
    return duplicates


def find_undecided(ledger: Iterable[LedgerEntry]) -> list[str]:
    return [entry.key for entry in ledger if entry.undecided]


def find_duplicate_entries(ledger: Iterable[LedgerEntry]) -> list[str]:
    seen: set[str] = set()
    duplicates: list[str] = []
    for entry in ledger:
        if entry.key in seen and entry.key not in duplicates:
            duplicates.append(entry.key)
        seen.add(entry.key)
    return duplicates


def verify_matrix(matrix: dict[str, Any]) -> None:
    missing = find_tables_without_operations(matrix)
    if missing:
        raise IntegrityViolation("tables with row security but no policies", missing)
    duplicates = find_duplicate_operations(matrix)
    if duplicates:
        raise IntegrityViolation("duplicate (role, operation) pairs", duplicates)


def verify_ledger(ledger: Iterable[LedgerEntry], strict: bool = False) -> list[str]:
    """Return undecided keys; in strict mode any undecided key is fatal."""
    ledger = list(ledger)
    duplicates = find_duplicate_entries(ledger)
    if duplicates:
        raise IntegrityViolation("duplicate ledger keys", duplicates)
    undecided = find_undecided(ledger)
    if strict and undecided:
        raise LedgerVerificationError("ledger entries still undecided", undecided)
    return undecided
