"""
Document-type registry — the lookup table that parameterises the generic
approval engine.

One entry per approval-gated type. The engine never branches on the type
code; everything type-specific (models, role names, upstream tier, which
statuses allow revision) is read from here.

Usage:
    from procurement.services.doc_types import get_document_type

    dtype = get_document_type("mtf")
    dtype.header_model      # MTFHeader
    dtype.approver_role     # "MTF Approver"
"""

from __future__ import annotations

from dataclasses import dataclass

from procurement.core.exceptions import ValidationError
from procurement.models.auth import ROLE_REQUESTER
from procurement.models.documents import (
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

_REJECTED_ONLY = frozenset({WorkflowStatus.REJECTED.value})


@dataclass(frozen=True)
class DocumentType:
    code: str
    label: str
    header_model: type
    line_model: type
    approver_role: str
    initiator_role: str
    source_code: str | None
    revisable_statuses: frozenset = _REJECTED_ONLY

    @property
    def slug(self) -> str:
        return self.code.lower()


DOCUMENT_TYPES: dict[str, DocumentType] = {
    "MTF": DocumentType(
        code="MTF",
        label="Material Transfer Form",
        header_model=MTFHeader,
        line_model=MTFLine,
        approver_role="MTF Approver",
        initiator_role=ROLE_REQUESTER,
        source_code=None,
    ),
    "STF": DocumentType(
        code="STF",
        label="Supplier Transfer Form",
        header_model=STFOrder,
        line_model=STFOrderLine,
        approver_role="STF Approver",
        initiator_role="STF Initiator",
        source_code="MTF",
    ),
    "OTF": DocumentType(
        code="OTF",
        label="On-The-Fly Order",
        header_model=OTFOrder,
        line_model=OTFOrderLine,
        approver_role="OTF Approver",
        initiator_role="OTF Initiator",
        source_code="STF",
        # Approved OTFs can be reissued (e.g. invoice corrections) as long as
        # nothing has been received against them yet.
        revisable_statuses=frozenset({WorkflowStatus.REJECTED.value, WorkflowStatus.APPROVED.value}),
    ),
    "MRF": DocumentType(
        code="MRF",
        label="Material Receipt Form",
        header_model=MRFHeader,
        line_model=MRFLine,
        approver_role="MRF Approver",
        initiator_role="MRF Initiator",
        source_code="OTF",
    ),
}


def get_document_type(code: str) -> DocumentType:
    """Resolve a type code or URL slug (``"MTF"`` / ``"mtf"``).

    Raises:
        ValidationError: for unknown codes.
    """
    dtype = DOCUMENT_TYPES.get((code or "").upper())
    if dtype is None:
        raise ValidationError(
            f"Unknown document type '{code}'. Must be one of: {', '.join(sorted(DOCUMENT_TYPES))}",
            details={"doc_type": code},
        )
    return dtype


def document_type_of(document) -> DocumentType:
    """Registry entry for a header instance."""
    return DOCUMENT_TYPES[document.doc_type]
