"""Divergences between ledger decisions, current policies and probe results."""
from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import PUBLIC_ROLES, LedgerEntry, ledger_key

MISSING_POLICY_FOR_ALLOWED = "MISSING_POLICY_FOR_ALLOWED"
EXPECT_TRUE_BUT_DENIED = "EXPECT_TRUE_BUT_DENIED"
EXPECT_FALSE_BUT_ALLOWED = "EXPECT_FALSE_BUT_ALLOWED"
PUBLIC_WRITE_ALLOWED = "PUBLIC_WRITE_ALLOWED"


def matrix_keys(matrix: dict[str, Any]) -> set[str]:
    return {
        ledger_key(table["table"], op["role"], op["operation"])
        for table in matrix.get("tables", [])
        for op in table.get("operations") or []
    }


def find_divergences(ledger: list[LedgerEntry], matrix: dict[str, Any]) -> list[dict[str, object]]:
    """Compare decided entries against the matrix and any merged probe results."""
    in_matrix = matrix_keys(matrix)
    divergences: list[dict[str, object]] = []

    def add(kind: str, entry: LedgerEntry) -> None:
        divergences.append({"type": kind, **entry.to_dict()})

    for entry in ledger:
        if entry.undecided:
            continue
        if entry.allowed and entry.key not in in_matrix:
            add(MISSING_POLICY_FOR_ALLOWED, entry)
        if entry.allowed_real is not None:
            if entry.allowed and entry.allowed_real is False:
                add(EXPECT_TRUE_BUT_DENIED, entry)
            if not entry.allowed and entry.allowed_real is True:
                add(EXPECT_FALSE_BUT_ALLOWED, entry)
        if entry.allowed and entry.role in PUBLIC_ROLES and entry.operation != "read":
            add(PUBLIC_WRITE_ALLOWED, entry)
    return divergences


def build_report(ledger: list[LedgerEntry], matrix: dict[str, Any]) -> dict[str, Any]:
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "decided": sum(1 for e in ledger if not e.undecided),
        "undecided": sum(1 for e in ledger if e.undecided),
        "with_real": sum(1 for e in ledger if e.allowed_real is not None),
        "divergences": find_divergences(ledger, matrix),
    }


def render_markdown(report: dict[str, Any]) -> str:
    divergences = report["divergences"]
    lines = [
        "# RLS Report",
        "",
        f"Generated at: {report['generated_at']}  ",
        f"Decided entries: {report['decided']}  ",
        f"Undecided entries: {report['undecided']}  ",
        f"With probe results: {report['with_real']}  ",
        f"Divergences: {len(divergences)}",
        "",
    ]
    if not divergences:
        lines.append("No divergences.")
        return "\n".join(lines) + "\n"

    lines += [
        "## Divergences",
        "",
        "| Type | Table | Role | Operation | allowed | allowed_real |",
        "|------|-------|------|-----------|---------|--------------|",
    ]
    for d in divergences:
        real = d.get("allowed_real", "")
        lines.append(
            f"| {d['type']} | {d['table']} | {d['role']} | {d['operation']} | {d['allowed']} | {real} |"
        )
    lines += ["", "### By type", ""]
    for kind, count in sorted(Counter(d["type"] for d in divergences).items()):
        lines.append(f"- {kind}: {count}")
    return "\n".join(lines) + "\n"


def write_report(json_path: Path, md_path: Path, report: dict[str, Any]) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    json_path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
    md_path.write_text(render_markdown(report), encoding="utf-8")
