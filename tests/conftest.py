"""pytest configuration for path management and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import text

# Ensure the project root is available on sys.path so tests can import the rlsledger package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rlsledger import create_app
from rlsledger.config import Settings
from rlsledger.extensions import db

# SQLite stand-ins for the Postgres catalog views the introspector reads.
CATALOG_DDL = [
    "CREATE TABLE pg_namespace (oid INTEGER PRIMARY KEY, nspname TEXT NOT NULL)",
    "CREATE TABLE pg_class (oid INTEGER PRIMARY KEY, relname TEXT NOT NULL, relnamespace INTEGER NOT NULL,"
    " relkind TEXT NOT NULL, relrowsecurity BOOLEAN NOT NULL)",
    "CREATE TABLE pg_policies (schemaname TEXT, tablename TEXT, policyname TEXT, roles TEXT,"
    " cmd TEXT, qual TEXT, with_check TEXT)",
]

NAMESPACES = [
    (1, "public"),
    (2, "pg_catalog"),
    (3, "information_schema"),
    (4, "billing"),
    (5, "pg_temp_3"),
]

CLASSES = [
    (10, "orders", 1, "r", 1),
    (11, "customers", 1, "r", 0),
    (12, "orders_pkey", 1, "i", 0),
    (13, "pg_class", 2, "r", 0),
    (14, "invoices", 4, "r", 1),
    (15, "scratch", 5, "r", 0),
    (16, "audit_log", 1, "r", 1),
]

POLICIES = [
    ("public", "orders", "orders_admin_all", "{admin}", "ALL", None, None),
    ("public", "orders", "orders_public_read", None, "SELECT", "true", None),
    ("public", "orders", "orders_staff_insert", "{authenticated}", "INSERT", None,
     "has_role(unidade_id, ARRAY['manager'::text, 'barber'::text])"),
    ("billing", "invoices", "invoices_owner_read", "{authenticated}", "SELECT",
     "EXISTS (SELECT 1 FROM roles r WHERE r.code = 'finance')", None),
    ("public", "customers", "customers_read", "{authenticated}", "SELECT", None, None),
]


def seed_catalog(execute) -> None:
    for statement in CATALOG_DDL:
        execute(text(statement))
    for oid, name in NAMESPACES:
        execute(text("INSERT INTO pg_namespace VALUES (:oid, :name)"), {"oid": oid, "name": name})
    for row in CLASSES:
        execute(
            text("INSERT INTO pg_class VALUES (:oid, :name, :ns, :kind, :rls)"),
            dict(zip(("oid", "name", "ns", "kind", "rls"), row)),
        )
    for row in POLICIES:
        execute(
            text("INSERT INTO pg_policies VALUES (:s, :t, :p, :roles, :cmd, :qual, :chk)"),
            dict(zip(("s", "t", "p", "roles", "cmd", "qual", "chk"), row)),
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'catalog.db'}",
        coverage_dir=tmp_path / "coverage",
        migrations_dir=tmp_path / "migrations",
        wait_attempts=3,
        wait_interval=0.0,
    )


@pytest.fixture
def app(settings):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "RLS_SETTINGS": settings,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def catalog(app):
    with app.app_context():
        seed_catalog(db.session.execute)
        db.session.commit()
    return app
