# Overview: Daily document numbering for sales and purchases.

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..errors import ValidationError
from factory_ledger.time_utils import today


def daily_prefix(prefix: str, day: date | None = None) -> str:
    day = day or today()
    return f"{prefix}-{day.strftime('%Y%m%d')}-"


def next_daily_number(model, prefix: str, *, day: date | None = None, pad: int = 4) -> str:
    """
    Next `{prefix}-{YYYYMMDD}-{NNNN}` number for `model`.

    The sequence is the count of numbers already issued under the same
    prefix that day, plus one. Two writers can compute the same number; the
    unique constraint on invoice_number rejects the loser, whose unit of work
    is retried (see RETRYABLE_WITH_INTEGRITY).
    """
    if not prefix:
        raise ValidationError("prefix is required")
    head = daily_prefix(prefix, day)
    issued = (
        db.session.query(db.func.count(model.id))
        .filter(model.invoice_number.like(f"{head}%"))
        .scalar()
    ) or 0
    return f"{head}{str(issued + 1).zfill(pad)}"
