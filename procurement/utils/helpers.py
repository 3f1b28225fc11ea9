"""Shared utilities for services and blueprints.

atomic:         one workflow transaction (commit on success, rollback on error)
parse_date:     lenient date parsing (ISO or DD.MM.YYYY), None on bad input
parse_decimal:  strict numeric parsing for quantities and prices
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from procurement.core.exceptions import ConflictError
from procurement.models import db

logger = logging.getLogger(__name__)


# ── Transaction helper ───────────────────────────────────────────────────────

@contextmanager
def atomic(resource: str = "Document"):
    """Run a block as one database transaction.

    Usage::

        with atomic("MTF"):
            header = ...
            write_history(header, ...)

    Commits when the block exits normally. Any exception rolls the session
    back and propagates; IntegrityError (duplicate number, unique key) is
    re-raised as ConflictError so it maps to 409.
    """
    try:
        yield
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit (%s): %s", resource, exc.orig)
        raise ConflictError(resource, "constraint", str(exc.orig)) from exc
    except Exception:
        db.session.rollback()
        raise


# ── Parsing ──────────────────────────────────────────────────────────────────

def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    for parser in (date.fromisoformat, lambda v: datetime.fromisoformat(v).date()):
        try:
            return parser(str(value))
        except (ValueError, TypeError):
            continue
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_decimal(value) -> Decimal:
    """Parse an int/float/str into a finite Decimal.

    Raises:
        ValueError: for booleans, empty values, non-numeric text, NaN or Infinity.
    """
    if value is None or isinstance(value, bool) or value == "":
        raise ValueError("a number is required")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"'{value}' is not a number") from exc
    if not result.is_finite():
        raise ValueError(f"'{value}' is not a finite number")
    return result
