"""
Document Service — creation and read models for approval-gated documents.

Creation rules (all types):
    - actor holds the type's initiator role (Administrator always may)
    - actor is assigned to the document's project and discipline
    - at least one line; quantity > 0; unit_price >= 0
    - downstream lines stay within their upstream backlog
    - header + lines + Created history row commit together

A project ceiling of 0 for the type means no approval: the document is
created Approved at level 0.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from procurement.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from procurement.models import db
from procurement.models.documents import WORKFLOW_STATUSES, WorkflowStatus
from procurement.models.history import DocumentHistory, HistoryAction, write_history
from procurement.models.master_data import Discipline, Supplier
from procurement.models.project import Project
from procurement.services.approval_gate import can_approve, capabilities
from procurement.services.code_generator import next_document_number
from procurement.services.consumption_ledger import TIERS, line_backlog_summary
from procurement.services.doc_types import DocumentType, get_document_type
from procurement.services.helpers.scoped_queries import get_scoped
from procurement.services.line_builder import build_lines, parse_line_inputs
from procurement.utils.helpers import atomic, parse_date

logger = logging.getLogger(__name__)

ATTACHMENT_KEYS = ("file_name", "file_type", "file_content")


# ── Shared validation ────────────────────────────────────────────────────────

def require_assignment(actor, action: str, project_id: int, discipline_id: int) -> None:
    if project_id not in actor.project_ids:
        raise ForbiddenError(action, "project", "actor is not assigned to the project")
    if discipline_id not in actor.discipline_ids:
        raise ForbiddenError(action, "discipline", "actor is not assigned to the discipline")


def _require_initiator(dtype: DocumentType, actor) -> None:
    if not (actor.is_admin or actor.has_role(dtype.initiator_role)):
        raise ForbiddenError(
            f"create {dtype.code}", "role",
            f"creating a {dtype.code} requires the '{dtype.initiator_role}' role",
        )


def validate_attachment(attachment) -> dict | None:
    """Attachments are stored opaque; only their envelope is checked."""
    if attachment is None:
        return None
    if not isinstance(attachment, dict):
        raise ValidationError("attachment must be an object", details={"attachment": "invalid"})
    problems = {
        f"attachment.{key}": "required string"
        for key in ATTACHMENT_KEYS
        if not isinstance(attachment.get(key), str) or not attachment.get(key)
    }
    if problems:
        raise ValidationError("attachment is incomplete", details=problems)
    return {key: attachment[key] for key in ATTACHMENT_KEYS}


def resolve_header_fields(dtype: DocumentType, tenant_id: int, data: dict, *, partial: bool = False) -> dict:
    """Validate type-specific header values (STF supplier, OTF invoice).

    With ``partial=True`` (revision) absent keys are left untouched.
    """
    fields: dict = {}
    if dtype.code == "STF":
        supplier_id = data.get("supplier_id")
        if supplier_id is None:
            if not partial:
                raise ValidationError("supplier_id is required for STF", details={"supplier_id": "required"})
        else:
            supplier = get_scoped(Supplier, supplier_id, tenant_id=tenant_id, resource="Supplier")
            if not supplier.is_active:
                raise ValidationError(
                    f"Supplier '{supplier.name}' is inactive", details={"supplier_id": supplier.id},
                )
            fields["supplier_id"] = supplier.id
    elif dtype.code == "OTF":
        if "invoice_no" in data or not partial:
            fields["invoice_no"] = (data.get("invoice_no") or "").strip() or None
        if "invoice_date" in data or not partial:
            raw_date = data.get("invoice_date")
            invoice_date = parse_date(raw_date)
            if raw_date and invoice_date is None:
                raise ValidationError(
                    "invoice_date must be YYYY-MM-DD or DD.MM.YYYY",
                    details={"invoice_date": raw_date},
                )
            fields["invoice_date"] = invoice_date
    return fields


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


def create_document(
    doc_code: str,
    actor,
    *,
    project_id: int,
    discipline_id: int,
    lines,
    attachment=None,
    **header_data,
) -> dict:
    """Create a header with its lines at level 0 and write the Created history row.

    Returns:
        ``{"document": ..., "history": ...}`` like the workflow transitions.
    """
    dtype = get_document_type(doc_code)
    tenant_id = actor.tenant_id
    _require_initiator(dtype, actor)
    inputs = parse_line_inputs(lines)
    attachment = validate_attachment(attachment)

    with atomic(dtype.code):
        project = get_scoped(Project, project_id, tenant_id=tenant_id, resource="Project")
        discipline = get_scoped(Discipline, discipline_id, tenant_id=tenant_id, resource="Discipline")
        require_assignment(actor, f"create {dtype.code}", project.id, discipline.id)
        fields = resolve_header_fields(dtype, tenant_id, header_data)

        new_lines = build_lines(dtype.code, tenant_id, project.id, discipline.id, inputs)

        status = (
            WorkflowStatus.APPROVED.value
            if project.max_approval_level(dtype.code) == 0
            else WorkflowStatus.PENDING_APPROVAL.value
        )
        for line in new_lines:
            line.status = status
            line.current_approval_level = 0

        header = dtype.header_model(
            tenant_id=tenant_id,
            doc_number=next_document_number(tenant_id, dtype.code),
            project_id=project.id,
            discipline_id=discipline.id,
            created_by=actor.id,
            status=status,
            current_approval_level=0,
            version=1,
            attachment=attachment,
            lines=new_lines,
            **fields,
        )
        db.session.add(header)
        db.session.flush()

        details = f"{dtype.code} created."
        if status == WorkflowStatus.APPROVED.value:
            details = f"{dtype.code} created; project requires no approval."
        entry = write_history(
            header, action=HistoryAction.CREATED, actor_id=actor.id,
            from_status=None, to_status=status, details=details,
        )
        logger.info(
            "%s created by user %s with %d line(s)",
            header.doc_number, actor.id, len(new_lines),
            extra={
                "tenant_id": tenant_id, "project_id": project.id, "doc_type": dtype.code,
                "document_id": header.id, "actor_id": actor.id,
            },
        )
        payload = {"document": header.to_dict(), "history": entry.to_dict()}
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


def get_document(doc_code: str, tenant_id: int, header_id: int):
    dtype = get_document_type(doc_code)
    return get_scoped(dtype.header_model, header_id, tenant_id=tenant_id, resource=dtype.code)


def list_history(doc_code: str, tenant_id: int, document_id: int | None = None) -> list[dict]:
    dtype = get_document_type(doc_code)
    stmt = DocumentHistory.select_for_tenant(tenant_id).where(DocumentHistory.doc_type == dtype.code)
    if document_id is not None:
        stmt = stmt.where(DocumentHistory.document_id == document_id)
    stmt = stmt.order_by(DocumentHistory.timestamp.asc(), DocumentHistory.id.asc())
    return [row.to_dict() for row in db.session.execute(stmt).scalars()]


def get_document_detail(doc_code: str, actor, header_id: int) -> dict:
    """Header, lines, computed totals, history and the actor's capabilities."""
    header = get_document(doc_code, actor.tenant_id, header_id)
    data = header.to_dict(include_attachment=True)
    data["history"] = list_history(doc_code, actor.tenant_id, header.id)
    data["capabilities"] = capabilities(header, actor, header.project)
    return data


def get_capabilities(doc_code: str, actor, header_id: int) -> dict:
    header = get_document(doc_code, actor.tenant_id, header_id)
    return {
        "doc_number": header.doc_number,
        "version": header.version,
        "actions": capabilities(header, actor, header.project),
    }


def list_documents(
    doc_code: str,
    actor,
    *,
    project_id: int | None = None,
    status: str | None = None,
    pending_for_actor: bool = False,
) -> list[dict]:
    """Documents of one type in the actor's tenant, newest first.

    ``pending_for_actor`` keeps only documents the actor can approve at
    their next level right now.
    """
    dtype = get_document_type(doc_code)
    model = dtype.header_model
    if status is not None and status not in WORKFLOW_STATUSES:
        raise ValidationError(f"Unknown status '{status}'", details={"status": status})

    stmt = model.select_for_tenant(actor.tenant_id)
    if project_id is not None:
        stmt = stmt.where(model.project_id == project_id)
    if pending_for_actor:
        stmt = stmt.where(model.status == WorkflowStatus.PENDING_APPROVAL.value)
    elif status is not None:
        stmt = stmt.where(model.status == status)
    stmt = stmt.order_by(model.date_created.desc(), model.id.desc())

    headers = list(db.session.execute(stmt).scalars())
    if pending_for_actor:
        headers = [h for h in headers if can_approve(h, actor, h.project)]
    return [h.to_dict(include_lines=False) for h in headers]


def get_line_backlog(doc_code: str, tenant_id: int, line_id: int) -> dict:
    """Quantity, consumed and backlog of one line of any tier that feeds another."""
    code = (doc_code or "").upper()
    tier = TIERS.get(code)
    if tier is None or code == "MDF":
        raise ValidationError(
            f"'{doc_code}' lines have no downstream consumer",
            details={"doc_type": doc_code},
        )
    line, header = tier.line_model, tier.header_model
    source_line = db.session.execute(
        select(line)
        .join(header, line.header_id == header.id)
        .where(line.id == line_id, header.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if source_line is None:
        raise NotFoundError(resource=f"{code} line", resource_id=line_id)
    summary = line_backlog_summary(code, source_line)
    summary["status"] = source_line.status
    summary["doc_number"] = source_line.header.doc_number
    return summary
