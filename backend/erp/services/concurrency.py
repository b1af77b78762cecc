# Overview: Atomic-scope helpers shared by every posting service.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the write lock is taken
    up front by begin_write_scope().
    """
    return query.with_for_update()


def begin_write_scope() -> None:
    """
    Start the unit of work holding the database write lock.

    On SQLite, BEGIN IMMEDIATE makes the validation reads and the writes that
    follow share one snapshot, and serializes concurrent posters. Other engines
    rely on lock_for_update() on the rows being read-modified-written.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    if attempts is None:
        attempts = current_app.config.get("ATOMIC_RETRY_ATTEMPTS", 3)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying unit of work after %s (attempt %d)", type(exc).__name__, attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int | None = None):
    """
    Run func() as one top-level atomic scope.

    Commits on success. Any exception (business rule or storage) rolls back
    every write made inside func and is re-raised. Scopes do not nest: func
    must not commit, and nothing it calls may open another scope.
    """
    def _op():
        begin_write_scope()
        try:
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, attempts=attempts)
