"""Attempt ledger operations against the database and record the outcome.

Every attempt runs in a transaction that is always rolled back. Without
``RLS_CRUD_REAL`` the probe only simulates (public roles fail, others
succeed) and writes nothing, so CI can run it without a database.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .exec_log import append_record
from .extensions import db
from .models import PUBLIC_ROLES, LedgerEntry


@dataclass
class ProbeResult:
    entry: LedgerEntry
    success: bool
    error: Optional[str] = None
    impersonated: bool = False
    impersonation_error: Optional[str] = None
    duration_ms: float = 0.0


def _split_table(table: str) -> tuple[Optional[str], str]:
    if "." in table:
        schema, name = table.split(".", 1)
        return schema, name
    return None, table


def _quoted_table(connection: Connection, table: str) -> str:
    quote = connection.dialect.identifier_preparer.quote
    schema, name = _split_table(table)
    return f"{quote(schema)}.{quote(name)}" if schema else quote(name)


def probe_statement(connection: Connection, table: str, operation: str) -> str:
    target = _quoted_table(connection, table)
    if operation == "read":
        return f"SELECT * FROM {target} LIMIT 1"
    if operation == "insert":
        return f"INSERT INTO {target} DEFAULT VALUES"
    if operation == "update":
        schema, name = _split_table(table)
        columns = inspect(connection).get_columns(name, schema=schema)
        if not columns:
            raise ValueError(f"table {table} has no columns to update")
        column = connection.dialect.identifier_preparer.quote(columns[0]["name"])
        return f"UPDATE {target} SET {column} = {column} WHERE 1 = 0"
    if operation == "delete":
        return f"DELETE FROM {target} WHERE 1 = 0"
    raise ValueError(f"unknown operation {operation!r}")


def _impersonate(connection: Connection, role: str) -> Optional[str]:
    """SET LOCAL ROLE inside a savepoint; returns the error text on failure."""
    quoted = connection.dialect.identifier_preparer.quote(role)
    savepoint = connection.begin_nested()
    try:
        connection.execute(text(f"SET LOCAL ROLE {quoted}"))
    except SQLAlchemyError as exc:
        savepoint.rollback()
        return str(exc)
    savepoint.commit()
    return None


def probe_entry(entry: LedgerEntry, impersonate: bool = False) -> ProbeResult:
    """Run one operation for real inside a rolled-back transaction."""
    result = ProbeResult(entry=entry, success=False)
    started = time.perf_counter()
    with db.engine.connect() as connection:
        transaction = connection.begin()
        try:
            if impersonate and entry.role and entry.role not in PUBLIC_ROLES:
                result.impersonation_error = _impersonate(connection, entry.role)
                result.impersonated = result.impersonation_error is None
            if result.impersonation_error is not None:
                # Running as the connection owner would bypass the policy under test.
                result.error = result.impersonation_error
            else:
                connection.execute(text(probe_statement(connection, entry.table, entry.operation)))
                result.success = True
        except (SQLAlchemyError, ValueError) as exc:
            result.error = str(exc)
        finally:
            transaction.rollback()
    result.duration_ms = (time.perf_counter() - started) * 1000
    return result


def probe_ledger(ledger: Iterable[LedgerEntry], settings: Settings) -> list[ProbeResult]:
    results: list[ProbeResult] = []
    for entry in ledger:
        if not settings.probe_real:
            results.append(ProbeResult(entry=entry, success=entry.role not in PUBLIC_ROLES))
            continue

        result = probe_entry(entry, impersonate=settings.probe_impersonate)
        if result.error:
            current_app.logger.info("Probe denied %s: %s", entry.key, result.error)
        append_record(settings.exec_log_path, {
            "ts": datetime.now(timezone.utc).isoformat(),
            "table": entry.table,
            "role": entry.role,
            "operation": entry.operation,
            "success": result.success,
            "error": result.error,
            "duration_ms": result.duration_ms,
            "impersonated": result.impersonated,
            "impersonation_error": result.impersonation_error,
        })
        results.append(result)
    return results
