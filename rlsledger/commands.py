"""Entry points for each pipeline stage.

Usual order: rls-wait-db, rls-matrix (or rls-matrix-offline), rls-expected-sync,
rls-classify, rls-verify. rls-probe, rls-exec-merge and rls-report compare the
ledger with what the database actually does. Every command exits 0 on success
and 1 on any fatal error.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from . import create_app
from .classify import Classifier, classify_ledger, public_deny_heuristic
from .config import Settings
from .errors import ConfigurationError, RlsLedgerError
from .exec_log import merge_exec_log
from .extensions import db
from .introspect import fetch_policies, list_tables, wait_for_database
from .ledger import baseline_ledger, load_ledger, require_ledger, save_ledger, sync_ledger
from .matrix import build_matrix, build_offline_matrix, load_matrix, policy_from_row, write_matrix
from .probe import probe_ledger
from .report import build_report, write_report
from .verify import verify_ledger, verify_matrix


def _path(value: Optional[Path], default: Path) -> Path:
    return Path(value) if value else default


def run_wait_db(settings: Settings) -> int:
    settings.require_database_url()
    app = create_app(settings)
    with app.app_context():
        attempt = wait_for_database(db.engine, settings.wait_attempts, settings.wait_interval)
    print(f"[rls:wait] database ready after {attempt} attempt(s)")
    return 0


def run_generate_matrix(settings: Settings, output: Optional[Path] = None) -> int:
    settings.require_database_url()
    app = create_app(settings)
    with app.app_context():
        tables = list_tables(db.session)
        policies = [policy_from_row(row) for row in fetch_policies(db.session)]
        enabled = {t.qualified_name for t in tables if t.rls_enabled}
        skipped = [p for p in policies if p.table not in enabled]
        if skipped:
            app.logger.warning(
                "Ignoring %d policies on tables without row security: %s",
                len(skipped),
                ", ".join(sorted({p.table for p in skipped})),
            )

    matrix = build_matrix(tables, policies)
    target = _path(output, settings.matrix_path)
    write_matrix(target, matrix)
    print(f"[rls:matrix] written to {target} tables: {len(matrix['tables'])}")
    return 0


def run_generate_matrix_offline(settings: Settings, migrations_dir: Optional[Path] = None) -> int:
    matrix = build_offline_matrix(_path(migrations_dir, settings.migrations_dir))
    write_matrix(settings.matrix_path, matrix)
    print(f"[rls:matrix:offline] written to {settings.matrix_path} tables: {len(matrix['tables'])}")
    if not matrix["tables"]:
        print("[rls:matrix:offline] no CREATE POLICY statements found in migrations")
    return 0


def run_baseline(settings: Settings, migrations_dir: Optional[Path] = None) -> int:
    if settings.ledger_path.exists():
        raise ConfigurationError(
            f"ledger already exists at {settings.ledger_path}; use rls-expected-sync to extend it"
        )
    matrix = build_offline_matrix(_path(migrations_dir, settings.migrations_dir))
    ledger = baseline_ledger(matrix)
    save_ledger(settings.ledger_path, ledger)
    print(f"[rls:baseline] written to {settings.ledger_path} entries: {len(ledger)}")
    return 0


def run_expected_sync(settings: Settings, matrix_path: Optional[Path] = None) -> int:
    matrix = load_matrix(_path(matrix_path, settings.matrix_path))
    ledger, added = sync_ledger(matrix, load_ledger(settings.ledger_path))
    save_ledger(settings.ledger_path, ledger)
    print(f"[rls:expected] saved {settings.ledger_path} new combinations: {added}")
    if added:
        print("[rls:expected] set allowed=true/false on the new entries (allowed=null)")
    return 0


def run_classify(
    settings: Settings,
    ledger_path: Optional[Path] = None,
    strategy: Classifier = public_deny_heuristic,
) -> int:
    path = _path(ledger_path, settings.ledger_path)
    ledger = require_ledger(path)
    changed = classify_ledger(ledger, strategy)
    save_ledger(path, ledger)
    print(f"[rls:classify] decided {changed} entries; review them before committing")
    return 0


def run_verify(settings: Settings, ledger_path: Optional[Path] = None) -> int:
    verify_matrix(load_matrix(settings.matrix_path))
    ledger = require_ledger(_path(ledger_path, settings.ledger_path))
    undecided = verify_ledger(ledger, strict=settings.strict)
    if undecided:
        print(f"[rls:verify] {len(undecided)} entries undecided (set RLS_STRICT=1 to fail)")
    print(f"[rls:verify] ok: {len(ledger)} ledger entries checked")
    return 0


def run_probe(settings: Settings, ledger_path: Optional[Path] = None) -> int:
    ledger = require_ledger(_path(ledger_path, settings.ledger_path))
    if settings.probe_real:
        settings.require_database_url()
        app = create_app(settings)
        with app.app_context():
            results = probe_ledger(ledger, settings)
        mode = "real"
    else:
        results = probe_ledger(ledger, settings)
        mode = "simulated"
    succeeded = sum(1 for r in results if r.success)
    print(f"[rls:probe] {mode}: {succeeded} succeeded, {len(results) - succeeded} denied")
    if settings.probe_real:
        print(f"[rls:probe] results appended to {settings.exec_log_path}")
    return 0


def run_exec_merge(settings: Settings, log_path: Optional[Path] = None) -> int:
    ledger = require_ledger(settings.ledger_path)
    updated, enriched = merge_exec_log(ledger, _path(log_path, settings.exec_log_path))
    save_ledger(settings.ledger_path, ledger)
    print(f"[rls:exec:merge] allowed_real updates: {updated} enriched entries: {enriched}")
    return 0


def run_report(settings: Settings, ledger_path: Optional[Path] = None) -> int:
    ledger = require_ledger(_path(ledger_path, settings.ledger_path))
    report = build_report(ledger, load_matrix(settings.matrix_path))
    write_report(settings.report_json_path, settings.report_md_path, report)

    divergences = report["divergences"]
    print(f"[rls:report] decided: {report['decided']} with probe results: {report['with_real']}")
    print(f"[rls:report] divergences: {len(divergences)}")
    for d in divergences:
        print(f"  {d['type']}, {d['table']}, {d['role']}, {d['operation']}")
    print(f"[rls:report] saved {settings.report_json_path} and {settings.report_md_path}")
    return 1 if divergences else 0


def _run(tag: str, stage: Callable[..., int], path: Optional[Path], settings: Optional[Settings] = None) -> int:
    try:
        settings = settings or Settings.from_env()
        return stage(settings, path)
    except RlsLedgerError as exc:
        print(f"[{tag}] {exc}", file=sys.stderr)
        return 1
    except SQLAlchemyError as exc:
        print(f"[{tag}] database error: {exc}", file=sys.stderr)
        return 1


def _parse_path(description: str, path_help: Optional[str], argv: Optional[Sequence[str]]) -> Optional[Path]:
    parser = argparse.ArgumentParser(description=description)
    if path_help:
        parser.add_argument("path", nargs="?", type=Path, default=None, help=path_help)
    args = parser.parse_args(argv)
    return getattr(args, "path", None)


def wait_db_main(argv: Optional[Sequence[str]] = None) -> int:
    _parse_path("Wait until the database accepts connections.", None, argv)
    return _run("rls:wait", lambda settings, _path: run_wait_db(settings), None)


def matrix_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Generate the RLS matrix from pg_policies.", "output file", argv)
    return _run("rls:matrix", run_generate_matrix, path)


def matrix_offline_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Generate the RLS matrix from migration SQL.", "migrations directory", argv)
    return _run("rls:matrix:offline", run_generate_matrix_offline, path)


def baseline_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Create an undecided ledger from migration SQL.", "migrations directory", argv)
    return _run("rls:baseline", run_baseline, path)


def expected_sync_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Add new matrix combinations to the ledger.", "matrix file", argv)
    return _run("rls:expected", run_expected_sync, path)


def classify_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Apply the default decision to undecided entries.", "ledger file", argv)
    return _run("rls:classify", run_classify, path)


def verify_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Check matrix and ledger invariants.", "ledger file", argv)
    return _run("rls:verify", run_verify, path)


def probe_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Attempt each ledger operation against the database.", "ledger file", argv)
    return _run("rls:probe", run_probe, path)


def exec_merge_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Merge probe results into the ledger.", "execution log file", argv)
    return _run("rls:exec:merge", run_exec_merge, path)


def report_main(argv: Optional[Sequence[str]] = None) -> int:
    path = _parse_path("Report divergences between ledger and policies.", "ledger file", argv)
    return _run("rls:report", run_report, path)
