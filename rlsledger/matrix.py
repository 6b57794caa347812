"""Build the table x role x operation matrix from policy metadata."""
from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .errors import ConfigurationError
from .models import COMMAND_OPERATIONS, OperationEntry, Policy, TableDescriptor

HAS_ROLE_RE = re.compile(r"has_role\([^,]+,\s*ARRAY\[(.+?)\]\)", re.IGNORECASE)
ROLE_CODE_RE = re.compile(r"r\.code\s*=\s*'([a-z_]+)'", re.IGNORECASE)

CREATE_POLICY_RE = re.compile(
    r"create\s+policy\s+(\"[^\"]+\"|[\w.]+)\s+on\s+([\w.\"]+)\s+"
    r"(?:as\s+(?:permissive|restrictive)\s+)?for\s+(select|insert|update|delete|all)\b",
    re.IGNORECASE,
)
TO_CLAUSE_RE = re.compile(r"\bto\s+(.+)", re.IGNORECASE | re.DOTALL)
USING_RE = re.compile(r"\busing\s*\(", re.IGNORECASE)
WITH_CHECK_RE = re.compile(r"\bwith\s+check\s*\(", re.IGNORECASE)


def normalize_roles(raw: Any) -> list[str]:
    """Turn a ``pg_policies.roles`` value into a list of role names."""
    if not raw:
        return ["public"]
    if isinstance(raw, (list, tuple)):
        return [str(role) for role in raw]
    value = str(raw).strip()
    if value.startswith("{") and value.endswith("}"):
        value = value[1:-1]
    return [part.strip().strip('"') for part in value.split(",") if part.strip()]


def extract_semantic_roles(*expressions: str | None) -> list[str]:
    """Application roles named inside USING / WITH CHECK expressions."""
    source = "\n".join(expr for expr in expressions if expr)
    found: list[str] = []
    for match in HAS_ROLE_RE.finditer(source):
        for item in match.group(1).split(","):
            role = re.sub(r"::text", "", item, flags=re.IGNORECASE)
            role = re.sub(r"['\s]", "", role)
            if role and role not in found:
                found.append(role)
    for match in ROLE_CODE_RE.finditer(source):
        if match.group(1) not in found:
            found.append(match.group(1))
    return found


def policy_from_row(row: dict[str, Any]) -> Policy:
    roles = normalize_roles(row.get("roles"))
    extracted = extract_semantic_roles(row.get("qual"), row.get("with_check"))
    for role in extracted:
        if role not in roles:
            roles.append(role)
    return Policy(
        name=row["policyname"],
        table=f"{row['schemaname']}.{row['tablename']}",
        command=str(row["cmd"]).lower(),
        roles=roles,
        using=row.get("qual"),
        check=row.get("with_check"),
        extracted_roles=extracted,
    )


def derive_operations(policies: Iterable[Policy]) -> list[OperationEntry]:
    """Expand policies into unique (role, operation) pairs; the first policy wins."""
    operations: list[OperationEntry] = []
    seen: set[tuple[str, str]] = set()
    for policy in policies:
        for role in policy.roles:
            for operation in COMMAND_OPERATIONS.get(policy.command, ()):
                if (role, operation) in seen:
                    continue
                seen.add((role, operation))
                operations.append(OperationEntry(role, operation, policy.name))
    return operations


def build_matrix(tables: Iterable[TableDescriptor], policies: Iterable[Policy]) -> dict[str, Any]:
    """Group policies under their RLS-enabled tables.

    Tables with row security on but no policy keep an empty operation list;
    policies on tables without row security are left out.
    """
    by_table: dict[str, list[Policy]] = {}
    enabled = [t.qualified_name for t in tables if t.rls_enabled]
    for name in enabled:
        by_table[name] = []
    for policy in policies:
        if policy.table in by_table:
            by_table[policy.table].append(policy)

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "tables": [
            {
                "table": name,
                "rls_enabled": True,
                "policies": [p.to_dict() for p in by_table[name]],
                "operations": [op.to_dict() for op in derive_operations(by_table[name])],
            }
            for name in enabled
        ],
    }


def write_matrix(path: Path, matrix: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(matrix, indent=2) + "\n", encoding="utf-8")


def load_matrix(path: Path) -> dict[str, Any]:
    """Read a matrix artifact and check its shape."""
    if not path.exists():
        raise ConfigurationError(f"matrix not found at {path}; run rls-matrix first")
    try:
        matrix = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"matrix at {path} is not valid JSON: {exc}") from exc

    if not isinstance(matrix, dict) or not isinstance(matrix.get("tables"), list):
        raise ConfigurationError(f"matrix at {path} has no 'tables' list")
    for table in matrix["tables"]:
        if not isinstance(table, dict) or "table" not in table:
            raise ConfigurationError(f"matrix at {path} has a table entry without a name")
        table.setdefault("operations", [])
        for op in table["operations"]:
            if not isinstance(op, dict) or "role" not in op or "operation" not in op:
                raise ConfigurationError(f"matrix table {table['table']} has a malformed operation")
    return matrix


# --- offline extraction from migration files ---

def _parenthesized(text: str, start: int) -> str | None:
    """Return the contents of the parenthesis opened just before ``start``."""
    depth = 1
    for index in range(start, len(text)):
        char = text[index]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[start:index].strip()
    return None


def _qualify(table: str) -> str:
    table = table.replace('"', "")
    return table if "." in table else f"public.{table}"


def _roles_from_clause(tail: str) -> list[str]:
    match = TO_CLAUSE_RE.search(tail)
    if not match:
        return ["public"]
    roles = [part.strip().strip('"') for part in match.group(1).split(",") if part.strip()]
    if not roles or any(role.lower() == "public" for role in roles):
        return ["public"]
    return roles


def extract_policies_from_sql(sql: str) -> list[Policy]:
    """Find ``CREATE POLICY`` statements in a migration script."""
    policies: list[Policy] = []
    for match in CREATE_POLICY_RE.finditer(sql):
        end = sql.find(";", match.end())
        tail = sql[match.end(): end if end != -1 else len(sql)]

        using = None
        using_match = USING_RE.search(tail)
        if using_match:
            using = _parenthesized(tail, using_match.end())
        check = None
        check_match = WITH_CHECK_RE.search(tail)
        if check_match:
            check = _parenthesized(tail, check_match.end())

        # TO must precede USING / WITH CHECK
        clause_end = min(
            [m.start() for m in (using_match, check_match) if m is not None] or [len(tail)]
        )

        policies.append(Policy(
            name=match.group(1).replace('"', ""),
            table=_qualify(match.group(2)),
            command=match.group(3).lower(),
            roles=_roles_from_clause(tail[:clause_end]),
            using=using,
            check=check,
        ))
    return policies


def build_offline_matrix(migrations_dir: Path) -> dict[str, Any]:
    """Matrix from ``*.sql`` migrations; every table with a policy counts as RLS-enabled."""
    if not migrations_dir.is_dir():
        raise ConfigurationError(f"migrations directory {migrations_dir} not found")

    policies: list[Policy] = []
    for sql_file in sorted(migrations_dir.glob("*.sql")):
        policies.extend(extract_policies_from_sql(sql_file.read_text(encoding="utf-8")))

    names = sorted({p.table for p in policies})
    tables = [TableDescriptor(*name.split(".", 1), rls_enabled=True) for name in names]
    return build_matrix(tables, policies)
