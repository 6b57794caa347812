"""Default decisions for undecided ledger entries.

The heuristic here is a starting point for review, not an authority: it
denies the ``public`` role and allows every other role. Decisions it makes
are expected to be corrected by hand where the policies say otherwise.
"""
from __future__ import annotations

from typing import Callable, Iterable

from .models import LedgerEntry

Classifier = Callable[[LedgerEntry], bool]


def public_deny_heuristic(entry: LedgerEntry) -> bool:
    return entry.role != "public"


def classify_ledger(ledger: Iterable[LedgerEntry], strategy: Classifier = public_deny_heuristic) -> int:
    """Decide every undecided entry with ``strategy``; returns how many changed."""
    changed = 0
    for entry in ledger:
        if not entry.undecided:
            continue
        entry.allowed = bool(strategy(entry))
        changed += 1
    return changed
