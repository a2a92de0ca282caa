# Overview: Locking and bounded-retry helpers shared by every write path.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConcurrencyConflict


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_serialized() covers it.
    """
    return query.with_for_update()


def begin_serialized() -> None:
    """
    Open the unit of work holding the database write lock.

    SQLite has no row locks, so the transaction is started with
    BEGIN IMMEDIATE: concurrent writers queue behind it instead of reading a
    snapshot another writer is about to change. Other dialects rely on
    lock_for_update() and this is a no-op.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if getattr(raw, "in_transaction", False):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts), StaleDataError
    (optimistic version mismatch) and ConcurrencyConflict raised by the unit
    itself. Once attempts are exhausted a ConcurrencyConflict reaches the
    caller. Any other exception rolls the session back and propagates
    untouched, so a failed operation never leaves partial writes behind.
    """
    if attempts is None:
        attempts = current_app.config.get("ORDERDESK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("ORDERDESK_RETRY_BACKOFF", 0.05)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, ConcurrencyConflict) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    "Concurrent update detected, please retry",
                    {"attempts": attempts, "reason": type(exc).__name__},
                ) from exc
            current_app.logger.warning(
                "Concurrency failure (%s), retry %d/%d", type(exc).__name__, attempt + 1, attempts - 1
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
