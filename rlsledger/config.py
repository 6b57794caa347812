"""Runtime settings for the pipeline, resolved once per invocation."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping
from urllib.parse import urlsplit

from .errors import ConfigurationError

MATRIX_FILENAME = "rls-matrix.json"
LEDGER_FILENAME = "rls-expected.json"
EXEC_LOG_FILENAME = "rls-exec-log.jsonl"
REPORT_JSON_FILENAME = "rls-report.json"
REPORT_MD_FILENAME = "rls-report.md"

# Managed Postgres hosts that refuse plain-text connections.
TLS_HOST_PATTERN = re.compile(r"(^|\.)supabase\.com?$")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def normalize_database_url(url: str) -> str:
    """Point Postgres URLs at the psycopg driver; leave other dialects alone."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def infer_ssl_mode(url: str, rls_ssl: str | None = None, pgsslmode: str | None = None) -> str | None:
    """Pick the sslmode for a connection URL.

    ``RLS_SSL`` overrides everything (``1`` forces ``require``, ``0`` turns TLS
    off), then an explicit ``PGSSLMODE``, then the hostname pattern.
    """
    override = (rls_ssl or "").strip().lower()
    if override in _TRUTHY:
        return "require"
    if override in _FALSY:
        return None
    if pgsslmode:
        return pgsslmode.strip()
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return None
    if TLS_HOST_PATTERN.search(host):
        return "require"
    return None


@dataclass
class Settings:
    database_url: str | None = None
    ssl_mode: str | None = None
    strict: bool = False
    coverage_dir: Path = field(default_factory=lambda: Path("coverage"))
    migrations_dir: Path = field(default_factory=lambda: Path("supabase") / "migrations")
    probe_real: bool = False
    probe_impersonate: bool = False
    wait_attempts: int = 30
    wait_interval: float = 2.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        url = env.get("DATABASE_URL") or env.get("SUPABASE_DB_URL") or None
        ssl_mode = infer_ssl_mode(url, env.get("RLS_SSL"), env.get("PGSSLMODE")) if url else None
        try:
            wait_attempts = int(env.get("RLS_WAIT_ATTEMPTS", "30"))
            wait_interval = float(env.get("RLS_WAIT_INTERVAL", "2"))
        except ValueError as exc:
            raise ConfigurationError(f"invalid wait settings: {exc}") from exc
        return cls(
            database_url=url,
            ssl_mode=ssl_mode,
            strict=_flag(env.get("RLS_STRICT")),
            coverage_dir=Path(env.get("RLS_COVERAGE_DIR", "coverage")),
            migrations_dir=Path(env.get("RLS_MIGRATIONS_DIR", os.path.join("supabase", "migrations"))),
            probe_real=_flag(env.get("RLS_CRUD_REAL")),
            probe_impersonate=_flag(env.get("RLS_CRUD_IMPERSONATE")),
            wait_attempts=max(1, wait_attempts),
            wait_interval=max(0.0, wait_interval),
        )

    @property
    def matrix_path(self) -> Path:
        return self.coverage_dir / MATRIX_FILENAME

    @property
    def ledger_path(self) -> Path:
        return self.coverage_dir / LEDGER_FILENAME

    @property
    def exec_log_path(self) -> Path:
        return self.coverage_dir / EXEC_LOG_FILENAME

    @property
    def report_json_path(self) -> Path:
        return self.coverage_dir / REPORT_JSON_FILENAME

    @property
    def report_md_path(self) -> Path:
        return self.coverage_dir / REPORT_MD_FILENAME

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError("set DATABASE_URL or SUPABASE_DB_URL")
        return self.database_url

    def to_flask_config(self) -> dict[str, object]:
        """Flask config for these settings; the database URI is left out when unset."""
        config: dict[str, object] = {"RLS_SETTINGS": self}
        if not self.database_url:
            return config
        url = normalize_database_url(self.database_url)
        config["SQLALCHEMY_DATABASE_URI"] = url
        if self.ssl_mode and url.startswith("postgresql"):
            config["SQLALCHEMY_ENGINE_OPTIONS"] = {"connect_args": {"sslmode": self.ssl_mode}}
        return config
