# Overview: Locking and retry helpers shared by every ledger-writing service.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)

# Invoice numbers are count-based; two writers racing for the same number
# collide on the unique constraint and the loser recounts.
RETRYABLE_WITH_INTEGRITY = RETRYABLE_ERRORS + (IntegrityError,)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    serializes writers there instead.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Take the database write lock up front on SQLite.

    Without it two SQLite writers could both read the same latest balance
    before either writes. No-op on databases that honor FOR UPDATE, and when
    the connection is already inside a transaction.
    """
    if db.engine.dialect.name != "sqlite":
        return
    driver_conn = db.session.connection().connection.driver_connection
    if not driver_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def lock_rows_in_order(model, ids) -> dict:
    """
    Lock rows of `model` one at a time in ascending id order.

    A fixed total order means two multi-item sales touching an overlapping
    set of entities can never deadlock each other. Missing ids are simply
    absent from the returned {id: row} mapping.
    """
    rows = {}
    for entity_id in sorted({i for i in ids if i is not None}):
        row = lock_for_update(db.session.query(model).filter_by(id=entity_id)).first()
        if row is not None:
            rows[entity_id] = row
    return rows


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. Any other exception rolls the
    session back before propagating, so a failed unit never leaves staged
    rows behind.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

