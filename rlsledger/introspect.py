"""Catalog queries for row-level security metadata."""
from __future__ import annotations

import time
from typing import Any, Callable

from flask import current_app
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .errors import ConnectivityError, DatabaseTimeoutError
from .models import TableDescriptor

TABLES_SQL = text(
    """
    SELECT n.nspname AS schema_name,
           c.relname AS table_name,
           c.relrowsecurity AS rls_enabled
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind = 'r'
      AND n.nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
      AND n.nspname NOT LIKE 'pg_temp%'
    ORDER BY n.nspname, c.relname
    """
)

POLICIES_SQL = text(
    """
    SELECT schemaname, tablename, policyname, roles, cmd, qual, with_check
    FROM pg_policies
    WHERE schemaname NOT IN ('pg_catalog', 'information_schema')
    ORDER BY schemaname, tablename, policyname
    """
)


def list_tables(session) -> list[TableDescriptor]:
    """Return every user table with its row-security flag, ordered by (schema, table)."""
    try:
        rows = session.execute(TABLES_SQL).mappings().all()
    except OperationalError as exc:
        raise ConnectivityError(f"catalog query failed: {exc}") from exc

    tables = [
        TableDescriptor(
            schema=row["schema_name"],
            name=row["table_name"],
            rls_enabled=bool(row["rls_enabled"]),
        )
        for row in rows
    ]
    tables.sort(key=lambda t: (t.schema, t.name))
    current_app.logger.info(
        "Found %d tables, %d with row security enabled",
        len(tables),
        sum(1 for t in tables if t.rls_enabled),
    )
    return tables


def fetch_policies(session) -> list[dict[str, Any]]:
    """Return the raw ``pg_policies`` rows outside the system schemas."""
    try:
        rows = session.execute(POLICIES_SQL).mappings().all()
    except OperationalError as exc:
        raise ConnectivityError(f"policy query failed: {exc}") from exc
    return [dict(row) for row in rows]


def wait_for_database(
    engine: Engine,
    attempts: int = 30,
    interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll the database with ``SELECT 1`` until it answers.

    Returns the attempt number that succeeded. Raises ``DatabaseTimeoutError``
    once ``attempts`` consecutive tries have failed.
    """
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return attempt
        except SQLAlchemyError as exc:
            last_error = exc
            current_app.logger.warning("Database not ready (attempt %d/%d): %s", attempt, attempts, exc)
        if attempt < attempts:
            sleep(interval)
    raise DatabaseTimeoutError(attempts, last_error)
