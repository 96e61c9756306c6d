# Overview: Service-layer operations for invoice numbering.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InvoiceSequence
from backoffice.time_utils import utcnow


def _bump(day: str) -> int | None:
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.day == day)
        .values(next_number=InvoiceSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(day=day)
        .scalar()
    )
    return current - 1


def next_invoice_number(*, now: datetime | None = None, pad: int = 4) -> str:
    """
    Allocate the next invoice number, e.g. "INV-20260118-0007".

    Numbers are sequential per UTC day. The UPDATE takes a row lock on the
    day's counter, so concurrent sales serialize here; the unique constraint
    on (day) settles the race for the first sale of a day.

    Runs inside the caller's transaction: if the sale rolls back, so does
    the counter, leaving no gap.
    """
    day = (now or utcnow()).strftime("%Y%m%d")
    prefix = current_app.config.get("INVOICE_PREFIX", "INV")

    next_num = _bump(day)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(InvoiceSequence(day=day, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(day)
            if next_num is None:
                raise

    return f"{prefix}-{day}-{next_num:0{pad}d}"
