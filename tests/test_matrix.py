"""Tests for matrix construction from pg_policies rows."""
from __future__ import annotations

import json

import pytest

from rlsledger.errors import ConfigurationError
from rlsledger.extensions import db
from rlsledger.introspect import fetch_policies, list_tables
from rlsledger.matrix import (build_matrix, derive_operations, extract_semantic_roles,
                              load_matrix, normalize_roles, policy_from_row, write_matrix)
from rlsledger.models import Policy, TableDescriptor


@pytest.mark.parametrize("raw, expected", [
    (None, ["public"]),
    ("", ["public"]),
    (["admin", "authenticated"], ["admin", "authenticated"]),
    ("{admin,authenticated}", ["admin", "authenticated"]),
    ("{public}", ["public"]),
    ("admin, staff", ["admin", "staff"]),
])
def test_normalize_roles(raw, expected):
    assert normalize_roles(raw) == expected


def test_extract_semantic_roles_from_has_role_and_role_code():
    using = "has_role(unidade_id, ARRAY['admin'::text, 'manager'::text])"
    check = "EXISTS (SELECT 1 FROM roles r WHERE r.code = 'barber')"
    assert extract_semantic_roles(using, check, None) == ["admin", "manager", "barber"]


def test_policy_from_row_appends_extracted_roles():
    policy = policy_from_row({
        "schemaname": "public",
        "tablename": "appointments",
        "policyname": "appointments_staff",
        "roles": "{authenticated}",
        "cmd": "UPDATE",
        "qual": "has_role(unidade_id, ARRAY['manager'::text])",
        "with_check": None,
    })
    assert policy.table == "public.appointments"
    assert policy.command == "update"
    assert policy.roles == ["authenticated", "manager"]
    assert policy.extracted_roles == ["manager"]


def test_all_command_expands_and_duplicates_collapse():
    policies = [
        Policy(name="p_all", table="public.orders", command="all", roles=["admin"]),
        Policy(name="p_read", table="public.orders", command="select", roles=["admin", "public"]),
    ]
    ops = [(op.role, op.operation, op.source_policy) for op in derive_operations(policies)]
    assert ops == [
        ("admin", "read", "p_all"),
        ("admin", "insert", "p_all"),
        ("admin", "update", "p_all"),
        ("admin", "delete", "p_all"),
        ("public", "read", "p_read"),
    ]


def test_build_matrix_keeps_enabled_tables_without_policies():
    tables = [
        TableDescriptor("public", "orders", True),
        TableDescriptor("public", "audit_log", True),
        TableDescriptor("public", "customers", False),
    ]
    policies = [
        Policy(name="orders_read", table="public.orders", command="select", roles=["admin"]),
        Policy(name="customers_read", table="public.customers", command="select", roles=["admin"]),
    ]
    matrix = build_matrix(tables, policies)

    names = [t["table"] for t in matrix["tables"]]
    assert names == ["public.orders", "public.audit_log"]
    assert matrix["tables"][1]["operations"] == []
    assert matrix["tables"][0]["operations"] == [
        {"role": "admin", "operation": "read", "source_policy": "orders_read"},
    ]


def test_matrix_from_catalog(catalog):
    with catalog.app_context():
        tables = list_tables(db.session)
        policies = [policy_from_row(row) for row in fetch_policies(db.session)]
    matrix = build_matrix(tables, policies)

    by_name = {t["table"]: t for t in matrix["tables"]}
    assert set(by_name) == {"billing.invoices", "public.audit_log", "public.orders"}
    invoice_pairs = {(o["role"], o["operation"]) for o in by_name["billing.invoices"]["operations"]}
    assert invoice_pairs == {("authenticated", "read"), ("finance", "read")}
    order_pairs = {(o["role"], o["operation"]) for o in by_name["public.orders"]["operations"]}
    assert ("public", "read") in order_pairs
    assert ("manager", "insert") in order_pairs
    assert ("barber", "insert") in order_pairs
    assert len([p for p in order_pairs if p[0] == "admin"]) == 4


def test_write_and_load_matrix(tmp_path):
    path = tmp_path / "coverage" / "rls-matrix.json"
    matrix = build_matrix([TableDescriptor("public", "orders", True)], [])
    write_matrix(path, matrix)

    loaded = load_matrix(path)
    assert loaded["tables"][0]["table"] == "public.orders"


def test_load_matrix_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_matrix(tmp_path / "nope.json")


def test_load_matrix_rejects_malformed_operations(tmp_path):
    path = tmp_path / "rls-matrix.json"
    path.write_text(json.dumps({"tables": [{"table": "orders", "operations": [{"role": "admin"}]}]}))
    with pytest.raises(ConfigurationError, match="malformed"):
        load_matrix(path)
