"""Data types shared by the matrix, ledger and report stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

OPERATIONS = ("read", "insert", "update", "delete")

# pg_policies.cmd (lower-cased) -> ledger operations
COMMAND_OPERATIONS: dict[str, tuple[str, ...]] = {
    "select": ("read",),
    "insert": ("insert",),
    "update": ("update",),
    "delete": ("delete",),
    "all": OPERATIONS,
}

PUBLIC_ROLES = frozenset({"public", "anon"})


def ledger_key(table: str, role: str, operation: str) -> str:
    return f"{table}|{role}|{operation}"


@dataclass(frozen=True)
class TableDescriptor:
    schema: str
    name: str
    rls_enabled: bool

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass
class Policy:
    name: str
    table: str
    command: str
    roles: list[str]
    using: Optional[str] = None
    check: Optional[str] = None
    extracted_roles: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "roles": list(self.roles),
            "command": self.command,
            "using": self.using,
            "check": self.check,
            "extracted_roles": list(self.extracted_roles),
        }


@dataclass(frozen=True)
class OperationEntry:
    role: str
    operation: str
    source_policy: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {"role": self.role, "operation": self.operation, "source_policy": self.source_policy}


@dataclass
class LedgerEntry:
    table: str
    role: str
    operation: str
    allowed: Optional[bool] = None
    allowed_real: Optional[bool] = None
    real_stats: Optional[dict[str, Any]] = None

    @property
    def key(self) -> str:
        return ledger_key(self.table, self.role, self.operation)

    @property
    def undecided(self) -> bool:
        return self.allowed is None

    def sort_key(self) -> tuple[str, str, str]:
        return (self.table, self.role, self.operation)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "table": self.table,
            "role": self.role,
            "operation": self.operation,
            "allowed": self.allowed,
        }
        # Execution results only appear once a probe log has been merged.
        if self.allowed_real is not None:
            data["allowed_real"] = self.allowed_real
        if self.real_stats is not None:
            data["real_stats"] = self.real_stats
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerEntry":
        allowed = data.get("allowed")
        if allowed is not None and not isinstance(allowed, bool):
            raise ValueError(f"allowed must be true, false or null for {data!r}")
        return cls(
            table=str(data["table"]),
            role=str(data["role"]),
            operation=str(data["operation"]),
            allowed=allowed,
            allowed_real=data.get("allowed_real"),
            real_stats=data.get("real_stats"),
        )
