"""
Material pipeline — per-MTF-line roll-up across every downstream tier.

For each requested line:

    requested      MTF line quantity
    stf_ordered    Σ live STF lines on it
    otf_ordered    Σ live OTF lines on those STF lines
    mrf_received   Σ live MRF lines on those OTF lines
    mdf_delivered  Σ MDF lines on those MRF lines

    mtf_backlog = requested   - stf_ordered
    stf_backlog = stf_ordered - otf_ordered
    otf_backlog = otf_ordered - mrf_received

"Live" excludes lines whose header is Closed, the same rule the ledger uses.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select

from procurement.models import db
from procurement.models.documents import MTFHeader, MTFLine
from procurement.services.consumption_ledger import consumer_lines


def _roll_down(source_code: str, parents: dict[int, set[int]]) -> tuple[dict[int, Decimal], dict[int, set[int]]]:
    """Sum the next tier per root and map each root to its next-tier line ids.

    ``parents`` maps root MTF line id → set of line ids at ``source_code``.
    """
    owner = {line_id: root for root, ids in parents.items() for line_id in ids}
    totals: dict[int, Decimal] = defaultdict(Decimal)
    children: dict[int, set[int]] = defaultdict(set)
    for line in consumer_lines(source_code, owner):
        root = owner[line.source_line_id]
        totals[root] += Decimal(str(line.quantity))
        children[root].add(line.id)
    return totals, children


def material_pipeline(actor, *, project_id: int | None = None) -> list[dict]:
    """Pipeline rows for the actor's tenant, restricted to assigned projects unless admin."""
    stmt = (
        select(MTFLine)
        .join(MTFHeader, MTFLine.header_id == MTFHeader.id)
        .where(MTFHeader.tenant_id == actor.tenant_id)
        .order_by(MTFHeader.id, MTFLine.id)
    )
    if project_id is not None:
        stmt = stmt.where(MTFHeader.project_id == project_id)
    if not actor.is_admin:
        stmt = stmt.where(MTFHeader.project_id.in_(actor.project_ids or [-1]))
    mtf_lines = list(db.session.execute(stmt).scalars())
    if not mtf_lines:
        return []

    level = {line.id: {line.id} for line in mtf_lines}
    stf_qty, level = _roll_down("MTF", level)
    otf_qty, level = _roll_down("STF", level)
    mrf_qty, level = _roll_down("OTF", level)
    mdf_qty, _ = _roll_down("MRF", level)

    rows = []
    for line in mtf_lines:
        requested = Decimal(str(line.quantity))
        stf, otf, mrf, mdf = stf_qty[line.id], otf_qty[line.id], mrf_qty[line.id], mdf_qty[line.id]
        rows.append({
            "mtf_line_id": line.id,
            "mtf_number": line.header.doc_number,
            "project_id": line.header.project_id,
            "discipline_id": line.header.discipline_id,
            "mtf_status": line.status,
            "approval_level": line.current_approval_level,
            "material_code": line.item.material_code if line.item else None,
            "material_name": line.item.material_name if line.item else None,
            "unit": line.item.unit if line.item else None,
            "requested": float(requested),
            "stf_ordered": float(stf),
            "otf_ordered": float(otf),
            "mrf_received": float(mrf),
            "mdf_delivered": float(mdf),
            "mtf_backlog": float(requested - stf),
            "stf_backlog": float(stf - otf),
            "otf_backlog": float(otf - mrf),
            "estimated_value": float(line.total_price),
        })
    return rows
