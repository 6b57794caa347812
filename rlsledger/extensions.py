"""Shared Flask extensions for the RLS ledger tooling."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# Catalog access only; the tooling defines no ORM models of its own.
db = SQLAlchemy()
