# Overview: Transaction boundaries, row locking and retry for write paths.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite, begin_write() takes the database write lock instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current unit of work as a write transaction.

    SQLite: issues BEGIN IMMEDIATE so concurrent writers queue on the
    database lock instead of failing at commit. No-op when the driver
    connection already holds a transaction, and on other dialects.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def rollback_or_escalate(context: str) -> None:
    """
    Roll back the current unit of work.

    A rollback that itself fails leaves decremented rows in an unknown
    state: log critical and re-raise for operator intervention.
    """
    try:
        db.session.rollback()
    except SQLAlchemyError:
        current_app.logger.critical("Rollback failed during %s; manual intervention required", context, exc_info=True)
        raise


def atomic(func, *, context: str = "write", attempts: int = 3):
    """
    Run func inside one write transaction: commit on success, roll back on
    any failure (restoring every row it touched) and re-raise.

    func must not commit. Concurrency failures are retried as a whole unit.
    """
    def _op():
        begin_write()
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            rollback_or_escalate(context)
            raise

    return run_with_retry(_op, attempts=attempts)
