# backend/clinicstock/__init__.py
from __future__ import annotations

import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(Config().as_dict())

    # Overrides must land before extensions read the config
    if overrides:
        app.config.from_mapping(overrides)

    # app.logger is the "clinicstock" logger; service module loggers inherit its level
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.stock_counts import stock_counts_bp

    app.register_blueprint(stock_counts_bp)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
