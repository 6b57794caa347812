"""Merge recorded probe executions back into the ledger."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .errors import ConfigurationError
from .models import LedgerEntry, ledger_key


@dataclass
class ExecSummary:
    success_count: int = 0
    failure_count: int = 0
    total_duration: float = 0.0
    samples: int = 0

    @property
    def any_success(self) -> bool:
        return self.success_count > 0

    @property
    def avg_duration_ms(self) -> float | None:
        return self.total_duration / self.samples if self.samples else None


def append_record(path: Path, record: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record) + "\n")


def aggregate(lines: Iterable[str]) -> dict[str, ExecSummary]:
    """Summarize JSONL execution records per ledger key; bad lines are skipped."""
    summaries: dict[str, ExecSummary] = {}
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
            key = ledger_key(record["table"], record["role"], record["operation"])
        except (json.JSONDecodeError, KeyError, TypeError):
            continue
        summary = summaries.setdefault(key, ExecSummary())
        if record.get("success"):
            summary.success_count += 1
        else:
            summary.failure_count += 1
        duration = record.get("duration_ms")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool):
            summary.total_duration += duration
            summary.samples += 1
    return summaries


def merge_exec_log(ledger: list[LedgerEntry], log_path: Path) -> tuple[int, int]:
    """Set ``allowed_real`` from the log: any success means allowed.

    Returns ``(updated, enriched)``: entries whose ``allowed_real`` changed and
    entries that received fresh execution stats.
    """
    if not log_path.exists():
        raise ConfigurationError(f"execution log not found at {log_path}; run rls-probe first")

    with log_path.open(encoding="utf-8") as handle:
        summaries = aggregate(handle)

    merged_at = datetime.now(timezone.utc).isoformat()
    updated = enriched = 0
    for entry in ledger:
        summary = summaries.get(entry.key)
        if summary is None:
            continue
        if entry.allowed_real is not summary.any_success:
            entry.allowed_real = summary.any_success
            updated += 1
        entry.real_stats = {
            "success_count": summary.success_count,
            "failure_count": summary.failure_count,
            "avg_duration_ms": summary.avg_duration_ms,
            "last_merged_at": merged_at,
        }
        enriched += 1
    return updated, enriched
