"""
Tiered consumption ledger.

Quantity flows down one chain:

    MTF line ─▶ STF line ─▶ OTF line ─▶ MRF line ─▶ MDF line

Each downstream line names its upstream line in ``source_line_id``. The
backlog of an upstream line is its quantity minus everything consumed by
downstream lines whose header is not Closed. The invariant enforced on every
creation and revision is::

    Σ consumed(upstream line) <= upstream line quantity

One generic implementation serves every tier; nothing here knows which tier
it is looking at beyond the TIERS table.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select

from procurement.core.exceptions import QuantityExceededError
from procurement.models import db
from procurement.models.documents import (
    MDFIssue,
    MDFIssueLine,
    MRFHeader,
    MRFLine,
    MTFHeader,
    MTFLine,
    OTFOrder,
    OTFOrderLine,
    STFOrder,
    STFOrderLine,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tier:
    code: str
    header_model: type
    line_model: type
    source_code: str | None


TIERS: dict[str, Tier] = {
    "MTF": Tier("MTF", MTFHeader, MTFLine, None),
    "STF": Tier("STF", STFOrder, STFOrderLine, "MTF"),
    "OTF": Tier("OTF", OTFOrder, OTFOrderLine, "STF"),
    "MRF": Tier("MRF", MRFHeader, MRFLine, "OTF"),
    "MDF": Tier("MDF", MDFIssue, MDFIssueLine, "MRF"),
}

# upstream code → the tier that consumes it
CONSUMERS: dict[str, Tier] = {t.source_code: t for t in TIERS.values() if t.source_code}


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _consumer_select(
    consumer: Tier, *columns, exclude_header_id: int | None = None, include_closed: bool = False,
):
    """SELECT over consumer lines joined to their header, Closed ones dropped by default."""
    line, header = consumer.line_model, consumer.header_model
    stmt = select(*(columns or (line,))).select_from(line).join(header, line.header_id == header.id)
    if not include_closed:
        stmt = stmt.where(header.status != WorkflowStatus.CLOSED.value)
    if exclude_header_id is not None:
        stmt = stmt.where(header.id != exclude_header_id)
    return stmt


def consumed_by_source(
    source_code: str,
    source_line_ids,
    *,
    exclude_header_id: int | None = None,
) -> dict[int, Decimal]:
    """Quantity consumed per upstream line id (missing ids map to 0)."""
    ids = list(source_line_ids)
    consumed = {line_id: Decimal("0") for line_id in ids}
    consumer = CONSUMERS.get(source_code)
    if consumer is None or not ids:
        return consumed

    line = consumer.line_model
    stmt = (
        _consumer_select(
            consumer, line.source_line_id, func.sum(line.quantity),
            exclude_header_id=exclude_header_id,
        )
        .where(line.source_line_id.in_(ids))
        .group_by(line.source_line_id)
    )
    for source_line_id, total in db.session.execute(stmt).all():
        consumed[source_line_id] = _to_decimal(total)
    return consumed


def consumed_quantity(source_code: str, source_line_id: int, *, exclude_header_id: int | None = None) -> Decimal:
    return consumed_by_source(
        source_code, [source_line_id], exclude_header_id=exclude_header_id,
    )[source_line_id]


def backlog(source_code: str, source_line, *, exclude_header_id: int | None = None) -> Decimal:
    """Remaining quantity of ``source_line`` not yet consumed downstream."""
    used = consumed_quantity(source_code, source_line.id, exclude_header_id=exclude_header_id)
    return _to_decimal(source_line.quantity) - used


def line_backlog_summary(source_code: str, source_line) -> dict:
    consumer = CONSUMERS.get(source_code)
    used = consumed_quantity(source_code, source_line.id)
    quantity = _to_decimal(source_line.quantity)
    return {
        "doc_type": source_code,
        "line_id": source_line.id,
        "consumer_type": consumer.code if consumer else None,
        "quantity": float(quantity),
        "consumed": float(used),
        "backlog": float(quantity - used),
    }


def assert_within_backlog(
    source_code: str,
    requests,
    *,
    exclude_header_id: int | None = None,
) -> None:
    """Check a new line set against its upstream backlogs.

    ``requests`` is an iterable of ``(source_line, quantity)``. Quantities
    aimed at the same upstream line are summed before comparison.

    Raises:
        QuantityExceededError: for the first upstream line that would go negative.
    """
    requested: dict[int, Decimal] = defaultdict(Decimal)
    sources = {}
    for source_line, quantity in requests:
        requested[source_line.id] += _to_decimal(quantity)
        sources[source_line.id] = source_line

    consumed = consumed_by_source(source_code, requested, exclude_header_id=exclude_header_id)
    for source_line_id, wanted in requested.items():
        available = _to_decimal(sources[source_line_id].quantity) - consumed[source_line_id]
        if wanted > available:
            logger.info(
                "Backlog exceeded on %s line %s: requested %s, available %s",
                source_code, source_line_id, wanted, available,
                extra={"doc_type": source_code, "source_line_id": source_line_id},
            )
            raise QuantityExceededError(source_line_id, wanted, available)


def consumer_lines(source_code: str, source_line_ids, *, include_closed: bool = False) -> list:
    """Downstream lines pointing at any of ``source_line_ids``.

    Lines on Closed documents are skipped unless ``include_closed`` is set.
    """
    consumer = CONSUMERS.get(source_code)
    ids = list(source_line_ids)
    if consumer is None or not ids:
        return []
    stmt = (
        _consumer_select(consumer, include_closed=include_closed)
        .where(consumer.line_model.source_line_id.in_(ids))
        .order_by(consumer.line_model.id)
    )
    return list(db.session.execute(stmt).scalars())


def has_downstream_consumption(source_code: str, source_line_ids) -> bool:
    """True while any downstream line, Closed or not, still references the source lines."""
    return bool(consumer_lines(source_code, source_line_ids, include_closed=True))
