# backend/clinicstock/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """
    Environment-driven settings.

    Values are read when create_app() instantiates the class, not at import,
    so tests and the CLI can set DATABASE_URL before building the app.
    """

    def __init__(self):
        # Optional "SECRET_KEY", with default dev key
        self.SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

        # SQLite DB stored in backend/instance/clinicstock.sqlite3
        self.SQLALCHEMY_DATABASE_URI = os.environ.get(
            "DATABASE_URL",  # optional alternative location
            "sqlite:///clinicstock.sqlite3",  # default local location
        )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False

        self.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

        # Low-stock notifications are best-effort unless strict mode is on
        self.LOW_STOCK_NOTIFICATIONS_STRICT = _env_flag("LOW_STOCK_NOTIFICATIONS_STRICT")

        self.TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
        self.STOCK_COUNT_PAGE_LIMIT = int(os.environ.get("STOCK_COUNT_PAGE_LIMIT", "50"))

    def as_dict(self) -> dict:
        return {key: value for key, value in vars(self).items() if key.isupper()}
