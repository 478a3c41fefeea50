# Overview: Transaction, locking and retry helpers shared by the write paths.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import CheckoutError, TransientError
from ..extensions import db

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front there instead.
    """
    return query.with_for_update()


def begin_write_transaction(lock_timeout_seconds: float | None = None) -> None:
    """
    Open the write transaction for a stock-mutating operation.

    SQLite: BEGIN IMMEDIATE takes the RESERVED lock now, so two checkouts
    cannot both read the same stock and then both write. The wait is
    bounded by the connection busy timeout.
    PostgreSQL: row locks come from lock_for_update(); lock_timeout bounds
    how long we queue behind another checkout.
    """
    if lock_timeout_seconds is None:
        lock_timeout_seconds = current_app.config.get("CHECKOUT_LOCK_TIMEOUT_SECONDS", 5)

    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        timeout_ms = int(lock_timeout_seconds * 1000)
        db.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, timeouts), StaleDataError
    (optimistic version conflicts) and any extra types in retry_on.
    The session is rolled back before every retry.
    """
    retryable = RETRYABLE_ERRORS + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after storage conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))


@contextmanager
def storage_errors_as_transient(action: str):
    """
    Translate storage-layer failures into TransientError.

    CheckoutError subclasses pass through untouched; nothing from
    SQLAlchemy leaves the block.
    """
    try:
        yield
    except CheckoutError:
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("%s failed on storage error: %s", action, exc)
        raise TransientError(f"Could not complete {action}, please try again") from exc
