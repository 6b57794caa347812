from __future__ import annotations

from collections.abc import Mapping

from flask import Flask
from flask_cors import CORS

from .config import Settings
from .extensions import db
from .routes import register_routes


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    if isinstance(config_object, Settings):
        app.config.from_mapping(config_object.to_flask_config())
    elif isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)
    else:
        app.config.from_mapping(Settings.from_env().to_flask_config())

    app.config.setdefault("RLS_SETTINGS", Settings())

    # File-backed report views work without a database; /db-health reports it.
    if app.config.get("SQLALCHEMY_DATABASE_URI") or app.config.get("SQLALCHEMY_BINDS"):
        db.init_app(app)
    else:
        app.logger.warning("No database configured; only file-backed views are available")

    # Report endpoints are read-only; any dashboard origin may fetch them.
    CORS(app,
         origins=["*"],
         allow_headers=["Content-Type"],
         methods=["GET", "OPTIONS"]
    )

    register_routes(app)

    return app
