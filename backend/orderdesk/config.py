# backend/orderdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the working directory unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///orderdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Editing line items of an ORDER_GENERATED (reserved, not invoiced) order.
    # Off: only quote states are editable.
    ORDERDESK_ALLOW_EDIT_WHILE_RESERVED = _env_bool("ORDERDESK_ALLOW_EDIT_WHILE_RESERVED", False)

    # Bounded retry for lock contention / stale writes
    ORDERDESK_RETRY_ATTEMPTS = int(os.environ.get("ORDERDESK_RETRY_ATTEMPTS", "3"))
    ORDERDESK_RETRY_BACKOFF = float(os.environ.get("ORDERDESK_RETRY_BACKOFF", "0.05"))

    ORDERDESK_ORDER_NUMBER_PREFIX = os.environ.get("ORDERDESK_ORDER_NUMBER_PREFIX", "ORD")
    ORDERDESK_LOG_LEVEL = os.environ.get("ORDERDESK_LOG_LEVEL", "INFO")
