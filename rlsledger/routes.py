"""Read-only HTTP views over the RLS pipeline artifacts."""
from __future__ import annotations

from flask import Blueprint, Flask, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .errors import ConfigurationError
from .extensions import db
from .ledger import require_ledger
from .matrix import load_matrix
from .report import find_divergences

bp = Blueprint("rls", __name__)


def _settings() -> Settings:
    return current_app.config["RLS_SETTINGS"]


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    if "sqlalchemy" not in current_app.extensions:
        return jsonify({"database": "unavailable", "message": "Database not configured"}), 500

    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.get("/rls/matrix")
def get_matrix() -> tuple[dict[str, object], int]:
    """Return the last generated permission matrix.
    ---
    tags:
      - RLS
    responses:
      200:
        description: Matrix artifact as written by rls-matrix.
      404:
        description: No matrix has been generated yet.
    """
    path = _settings().matrix_path
    if not path.exists():
        return jsonify({"error": "not_found", "message": "Matrix not generated"}), 404
    try:
        matrix = load_matrix(path)
    except ConfigurationError as exc:
        current_app.logger.exception("Failed to read matrix", exc_info=exc)
        return jsonify({"error": "invalid_artifact", "message": str(exc)}), 500
    return jsonify(matrix), 200


@bp.get("/rls/ledger")
def get_ledger() -> tuple[dict[str, object], int]:
    """Return ledger entries with decision counts.
    ---
    tags:
      - RLS
    responses:
      200:
        description: Ledger entries and decided/undecided totals.
      404:
        description: No ledger exists yet.
    """
    path = _settings().ledger_path
    if not path.exists():
        return jsonify({"error": "not_found", "message": "Ledger not synced"}), 404
    try:
        ledger = require_ledger(path)
    except ConfigurationError as exc:
        current_app.logger.exception("Failed to read ledger", exc_info=exc)
        return jsonify({"error": "invalid_artifact", "message": str(exc)}), 500

    undecided = sum(1 for entry in ledger if entry.undecided)
    return jsonify({
        "entries": [entry.to_dict() for entry in ledger],
        "total": len(ledger),
        "decided": len(ledger) - undecided,
        "undecided": undecided,
    }), 200


@bp.get("/rls/report")
def get_report() -> tuple[dict[str, object], int]:
    """Compute divergences between the ledger and the matrix.
    ---
    tags:
      - RLS
    responses:
      200:
        description: Divergence list (empty when consistent).
      404:
        description: Matrix or ledger missing.
    """
    settings = _settings()
    if not settings.matrix_path.exists() or not settings.ledger_path.exists():
        return jsonify({"error": "not_found", "message": "Matrix and ledger are both required"}), 404
    try:
        matrix = load_matrix(settings.matrix_path)
        ledger = require_ledger(settings.ledger_path)
    except ConfigurationError as exc:
        current_app.logger.exception("Failed to read RLS artifacts", exc_info=exc)
        return jsonify({"error": "invalid_artifact", "message": str(exc)}), 500

    divergences = find_divergences(ledger, matrix)
    return jsonify({"divergences": divergences, "count": len(divergences)}), 200


def register_routes(app: Flask) -> None:
    app.register_blueprint(bp)
