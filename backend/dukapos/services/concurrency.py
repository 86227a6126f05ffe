# Overview: Transaction helpers shared by every service that touches stock, sales or loyalty.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The stock ledger does not rely on the lock alone (see stock_ledger_service.adjust).
    Locked rows are always re-read so stale identity-map values never leak in.
    """
    return query.with_for_update().populate_existing()


def begin_write():
    """
    Take the database write lock before the first read on SQLite.

    A deferred SQLite transaction that reads first and then writes cannot
    wait for a competing writer; it fails with "database is locked" at once.
    BEGIN IMMEDIATE makes concurrent writers queue on the busy timeout.
    Other databases rely on row locks instead.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if not db.session.connection().connection.dbapi_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func() and commit as one unit of work.

    Any exception rolls the session back before propagating, so callers
    never observe partial state. Lock/version conflicts are retried as a
    whole (func must be safe to re-run from scratch).
    """
    def _op():
        try:
            begin_write()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
