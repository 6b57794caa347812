"""Tests for folding probe executions into the ledger."""
from __future__ import annotations

import json

import pytest

from rlsledger.errors import ConfigurationError
from rlsledger.exec_log import aggregate, append_record, merge_exec_log
from rlsledger.models import LedgerEntry


def _record(role, success, duration=None, operation="read"):
    return {"table": "orders", "role": role, "operation": operation,
            "success": success, "duration_ms": duration}


def test_aggregate_skips_invalid_lines():
    lines = [
        json.dumps(_record("admin", True, 4)),
        "not json",
        json.dumps({"table": "orders"}),
        "",
        json.dumps(_record("admin", False, 6)),
    ]
    summaries = aggregate(lines)

    assert list(summaries) == ["orders|admin|read"]
    summary = summaries["orders|admin|read"]
    assert (summary.success_count, summary.failure_count) == (1, 1)
    assert summary.avg_duration_ms == 5


def test_merge_sets_allowed_real_and_stats(tmp_path):
    log = tmp_path / "rls-exec-log.jsonl"
    for record in (_record("admin", False, 2), _record("admin", True, 4), _record("public", False)):
        append_record(log, record)

    ledger = [
        LedgerEntry("orders", "admin", "read", allowed=True),
        LedgerEntry("orders", "public", "read", allowed=False),
        LedgerEntry("orders", "staff", "read", allowed=True),
    ]
    updated, enriched = merge_exec_log(ledger, log)

    assert (updated, enriched) == (2, 2)
    admin, public, staff = ledger
    assert admin.allowed_real is True
    assert admin.real_stats["success_count"] == 1
    assert admin.real_stats["avg_duration_ms"] == 3
    assert public.allowed_real is False
    assert public.real_stats["avg_duration_ms"] is None
    assert staff.allowed_real is None
    assert staff.real_stats is None
    assert admin.allowed is True


def test_second_merge_counts_no_updates(tmp_path):
    log = tmp_path / "rls-exec-log.jsonl"
    append_record(log, _record("admin", True, 1))
    ledger = [LedgerEntry("orders", "admin", "read", allowed=True)]

    merge_exec_log(ledger, log)
    updated, enriched = merge_exec_log(ledger, log)

    assert (updated, enriched) == (0, 1)


def test_missing_log_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        merge_exec_log([], tmp_path / "missing.jsonl")
