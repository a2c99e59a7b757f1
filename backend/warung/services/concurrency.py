# Overview: Session-level concurrency helpers shared by the sale and debt workflows.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def rollback_quietly(context: str) -> None:
    """
    Undo every write of the current unit of work.

    A failing rollback is logged and swallowed so the caller re-raises the
    original error, never the cleanup failure.
    """
    try:
        db.session.rollback()
    except SQLAlchemyError:
        current_app.logger.exception("Rollback failed after %s", context)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            rollback_quietly(f"concurrency conflict in {getattr(func, '__name__', 'operation')}")
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying %s after %s (attempt %d/%d)",
                getattr(func, "__name__", "operation"),
                type(exc).__name__,
                attempt + 1,
                attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            rollback_quietly(getattr(func, "__name__", "operation"))
            raise
    if last_exc:
        raise last_exc
