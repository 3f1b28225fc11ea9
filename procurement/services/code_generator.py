"""
Document number generation: MTF-0001, STF-0001, ...

Numbers are monotonic per (tenant, document type). The DocumentSequence row
is locked FOR UPDATE while a number is issued, so two creations in the same
tenant never receive the same number. On first use the sequence is seeded
from the highest numeric suffix already present, which keeps numbering
continuous for data loaded before the sequence table existed.
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context
from sqlalchemy import select

from procurement.models import db
from procurement.models.documents import MDFIssue, MRFHeader, MTFHeader, OTFOrder, STFOrder
from procurement.models.sequence import DocumentSequence

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 4

NUMBERED_MODELS = {
    "MTF": MTFHeader,
    "STF": STFOrder,
    "OTF": OTFOrder,
    "MRF": MRFHeader,
    "MDF": MDFIssue,
}


def _number_width() -> int:
    if has_app_context():
        return int(current_app.config.get("DOCUMENT_NUMBER_WIDTH", DEFAULT_WIDTH))
    return DEFAULT_WIDTH


def _highest_existing_suffix(tenant_id: int, prefix: str) -> int:
    model = NUMBERED_MODELS[prefix]
    full_prefix = prefix + "-"
    numbers = db.session.execute(
        select(model.doc_number).where(
            model.tenant_id == tenant_id,
            model.doc_number.like(f"{full_prefix}%"),
        )
    ).scalars()
    highest = 0
    for number in numbers:
        try:
            highest = max(highest, int(number[len(full_prefix):]))
        except ValueError:
            continue
    return highest


def next_document_number(tenant_id: int, prefix: str) -> str:
    """Reserve and return the next number for ``prefix`` within a tenant.

    Must run inside the caller's transaction: the reservation is only
    durable once the document that uses it commits.
    """
    sequence = db.session.execute(
        select(DocumentSequence)
        .where(DocumentSequence.tenant_id == tenant_id, DocumentSequence.doc_type == prefix)
        .with_for_update()
    ).scalar_one_or_none()

    if sequence is None:
        seed = _highest_existing_suffix(tenant_id, prefix)
        sequence = DocumentSequence(tenant_id=tenant_id, doc_type=prefix, last_value=seed)
        db.session.add(sequence)
        logger.debug("Seeded %s sequence for tenant %s at %s", prefix, tenant_id, seed)

    sequence.last_value += 1
    db.session.flush()
    return f"{prefix}-{sequence.last_value:0{_number_width()}d}"
