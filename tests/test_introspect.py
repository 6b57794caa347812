"""Tests for the catalog introspector and the database wait helper."""
from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from rlsledger.errors import ConnectivityError, DatabaseTimeoutError
from rlsledger.extensions import db
from rlsledger.introspect import fetch_policies, list_tables, wait_for_database
from rlsledger.models import TableDescriptor


def test_list_tables_skips_system_schemas_and_non_tables(catalog):
    with catalog.app_context():
        tables = list_tables(db.session)

    assert tables == [
        TableDescriptor("billing", "invoices", True),
        TableDescriptor("public", "audit_log", True),
        TableDescriptor("public", "customers", False),
        TableDescriptor("public", "orders", True),
    ]


def test_fetch_policies_is_ordered_by_schema_table_policy(catalog):
    with catalog.app_context():
        rows = fetch_policies(db.session)

    assert [(r["schemaname"], r["tablename"], r["policyname"]) for r in rows] == [
        ("billing", "invoices", "invoices_owner_read"),
        ("public", "customers", "customers_read"),
        ("public", "orders", "orders_admin_all"),
        ("public", "orders", "orders_public_read"),
        ("public", "orders", "orders_staff_insert"),
    ]


def test_missing_catalog_surfaces_as_connectivity_error(app):
    with app.app_context():
        with pytest.raises(ConnectivityError):
            list_tables(db.session)


class _Connection:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement):
        return None


class FlakyEngine:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def connect(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        return _Connection()


def test_wait_for_database_returns_successful_attempt(app):
    engine = FlakyEngine(failures=2)
    sleeps = []
    with app.app_context():
        attempt = wait_for_database(engine, attempts=5, interval=0.5, sleep=sleeps.append)

    assert attempt == 3
    assert sleeps == [0.5, 0.5]


def test_wait_for_database_times_out_after_budget(app):
    engine = FlakyEngine(failures=10)
    sleeps = []
    with app.app_context():
        with pytest.raises(DatabaseTimeoutError) as excinfo:
            wait_for_database(engine, attempts=3, interval=1.0, sleep=sleeps.append)

    assert engine.calls == 3
    assert len(sleeps) == 2
    assert excinfo.value.attempts == 3
    assert "connection refused" in str(excinfo.value)
