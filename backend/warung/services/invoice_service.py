# Overview: Monthly invoice numbering; one atomic upsert-increment per sale.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InvoiceSequence
from warung.time_utils import to_business_time, utcnow


INVOICE_PAD = 5

_UPSERT_DIALECTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def period_key(local_dt: datetime) -> str:
    """Calendar month token, e.g. "202512"."""
    return local_dt.strftime("%Y%m")


def _upsert_increment(period: str) -> int:
    insert = _UPSERT_DIALECTS[db.engine.dialect.name]
    stmt = insert(InvoiceSequence).values(period=period, last_number=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=["period"],
        set_={
            "last_number": InvoiceSequence.last_number + 1,
            "updated_at": func.now(),
        },
    ).returning(InvoiceSequence.last_number)
    return db.session.execute(stmt).scalar_one()


def _update_then_insert(period: str) -> int:
    """
    Fallback for dialects without ON CONFLICT: bump the row if it exists,
    otherwise insert it inside a savepoint and retry the bump if another
    writer won the insert race.
    """
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.period == period)
        .values(last_number=InvoiceSequence.last_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(InvoiceSequence(period=period, last_number=1))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    return (
        db.session.query(InvoiceSequence.last_number)
        .filter_by(period=period)
        .populate_existing()
        .scalar()
    )


def next_sequence_number(period: str) -> int:
    """
    Atomically advance and return the counter for `period`.

    Runs inside the caller's unit of work: if the sale rolls back, so does
    the increment, and the number is reissued to the next committed sale.
    """
    if db.engine.dialect.name in _UPSERT_DIALECTS:
        return _upsert_increment(period)
    return _update_then_insert(period)


def issue_invoice_number(at: datetime | None = None) -> str:
    """
    Issue the invoice code for a sale created at `at` (server time, UTC).

    Format: {prefix}-{YYYYMMDD}-{counter:05d}; the counter is scoped to the
    calendar month in the business timezone.
    """
    local = to_business_time(at or utcnow())
    number = next_sequence_number(period_key(local))
    prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    return f"{prefix}-{local.strftime('%Y%m%d')}-{number:0{INVOICE_PAD}d}"
