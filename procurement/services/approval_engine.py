"""
Approval Engine — the Level Advancer for every approval-gated document type.

Transitions:
    approve   Pending Approval ──▶ Pending Approval (next level) | Approved (final level)
    reject    Pending Approval ──▶ Rejected (whole document, or selected lines)
    revise    Rejected (OTF also Approved) ──▶ Pending Approval at level 0, new lines
    close     Rejected ──▶ Closed (creator acknowledges the rejection)

Each transition is one database transaction:
    1. load the header FOR UPDATE within the actor's tenant
    2. re-run the Approval Gate; refusals raise ForbiddenError / InvalidTransitionError
    3. claim the version (conditional UPDATE ... WHERE version = :expected)
    4. mutate lines and header
    5. append exactly one history row
    6. commit

The engine is type-agnostic: everything type-specific comes from the
document-type registry.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm.attributes import set_committed_value

from procurement.core.exceptions import InvalidTransitionError, NotFoundError, StaleStateError
from procurement.models import db
from procurement.models.documents import WorkflowStatus
from procurement.models.history import HistoryAction, write_history
from procurement.services.approval_gate import check_approve, check_close, check_reject, check_revise
from procurement.services.consumption_ledger import has_downstream_consumption
from procurement.services.doc_types import DocumentType, get_document_type
from procurement.services.line_builder import build_lines, parse_line_inputs
from procurement.utils.helpers import atomic

logger = logging.getLogger(__name__)

PENDING = WorkflowStatus.PENDING_APPROVAL.value
APPROVED = WorkflowStatus.APPROVED.value
REJECTED = WorkflowStatus.REJECTED.value
CLOSED = WorkflowStatus.CLOSED.value


# ═════════════════════════════════════════════════════════════════════════════
# Internals
# ═════════════════════════════════════════════════════════════════════════════


def _load_for_update(dtype: DocumentType, tenant_id: int, header_id: int):
    model = dtype.header_model
    header = db.session.execute(
        select(model)
        .where(model.id == header_id, model.tenant_id == tenant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if header is None:
        raise NotFoundError(resource=dtype.code, resource_id=header_id)
    return header


def _claim_version(dtype: DocumentType, header, expected_version: int | None) -> None:
    """Bump ``version`` only if nobody else did since we read it.

    Raises:
        StaleStateError: caller's expected_version is outdated, or a
            concurrent transaction committed first.
    """
    current = header.version
    if expected_version is not None and int(expected_version) != current:
        raise StaleStateError(dtype.code, header.id, int(expected_version), current)

    model = dtype.header_model
    result = db.session.execute(
        update(model)
        .where(model.id == header.id, model.version == current)
        .values(version=current + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleStateError(dtype.code, header.id, current, None)
    set_committed_value(header, "version", current + 1)


def derive_header_status(lines) -> str:
    """Aggregate line statuses: any pending → pending; else any approved → approved; else rejected."""
    statuses = {line.status for line in lines}
    if PENDING in statuses:
        return PENDING
    if APPROVED in statuses:
        return APPROVED
    return REJECTED


def _log_transition(action: str, header, actor, **extra) -> None:
    logger.info(
        "%s %s by user %s → %s L%s",
        header.doc_number, action, actor.id, header.status, header.current_approval_level,
        extra={
            "tenant_id": header.tenant_id,
            "project_id": header.project_id,
            "doc_type": header.doc_type,
            "document_id": header.id,
            "actor_id": actor.id,
            **extra,
        },
    )


def _result(header, entry) -> dict:
    return {"document": header.to_dict(), "history": entry.to_dict()}


# ═════════════════════════════════════════════════════════════════════════════
# Approve
# ═════════════════════════════════════════════════════════════════════════════


def approve(doc_code: str, header_id: int, actor, *, expected_version: int | None = None) -> dict:
    """Advance a pending document by one approval level.

    Lines still pending at the old level move with the header; lines
    rejected earlier stay rejected. Reaching the project's ceiling flips
    the moved lines (and so the header) to Approved.

    Returns:
        ``{"document": header dict with lines, "history": new history row}``
    """
    dtype = get_document_type(doc_code)
    with atomic(dtype.code):
        header = _load_for_update(dtype, actor.tenant_id, header_id)
        project = header.project
        check_approve(header, actor, project).raise_if_denied(header)
        _claim_version(dtype, header, expected_version)

        old_level = header.current_approval_level
        new_level = old_level + 1
        is_final = new_level >= project.max_approval_level(dtype.code)
        new_status = APPROVED if is_final else PENDING

        for line in header.lines:
            if line.status == PENDING and line.current_approval_level == old_level:
                line.current_approval_level = new_level
                line.status = new_status

        header.current_approval_level = new_level
        header.status = derive_header_status(header.lines)

        details = (
            f"{dtype.code} fully approved at L{new_level}."
            if is_final else f"{dtype.code} approved to L{new_level}."
        )
        entry = write_history(
            header, action=HistoryAction.APPROVED, actor_id=actor.id,
            from_status=PENDING, to_status=header.status, details=details,
        )
        _log_transition("approved", header, actor, from_level=old_level, to_level=new_level)
        payload = _result(header, entry)
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# Reject
# ═════════════════════════════════════════════════════════════════════════════


def reject(
    doc_code: str,
    header_id: int,
    actor,
    *,
    line_ids=None,
    comment: str | None = None,
    expected_version: int | None = None,
) -> dict:
    """Reject a pending document, or only some of its pending lines.

    Without ``line_ids`` every pending line and the header become Rejected.
    With ``line_ids`` only those lines are rejected and the header status
    is re-derived, so it stays pending while any sibling is still pending.

    Raises:
        InvalidTransitionError: a requested line is unknown or not pending.
    """
    dtype = get_document_type(doc_code)
    with atomic(dtype.code):
        header = _load_for_update(dtype, actor.tenant_id, header_id)
        gate = check_reject(header, actor, header.project)
        gate.raise_if_denied(header)

        pending = {line.id: line for line in header.lines if line.status == PENDING}
        if line_ids:
            requested = sorted({int(i) for i in line_ids})
            invalid = [i for i in requested if i not in pending]
            if invalid:
                raise InvalidTransitionError(
                    header.doc_number, "reject", header.status,
                    f"lines {', '.join(map(str, invalid))} are not pending lines of this document",
                )
            targets = [pending[i] for i in requested]
        else:
            targets = list(pending.values())

        _claim_version(dtype, header, expected_version)

        for line in targets:
            line.status = REJECTED
        header.status = derive_header_status(header.lines) if line_ids else REJECTED

        if line_ids:
            details = (
                f"{dtype.code} lines {', '.join(str(line.id) for line in targets)} "
                f"rejected at L{gate.required_level}."
            )
        else:
            details = f"{dtype.code} rejected at L{gate.required_level}."
        if comment:
            details += f" Comment: {comment.strip()}"

        entry = write_history(
            header, action=HistoryAction.REJECTED, actor_id=actor.id,
            from_status=PENDING, to_status=header.status, details=details,
            snapshot={"rejected_line_ids": [line.id for line in targets]} if line_ids else None,
        )
        _log_transition(
            "rejected", header, actor,
            level=gate.required_level, rejected_lines=len(targets), partial=bool(line_ids),
        )
        payload = _result(header, entry)
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# Revise
# ═════════════════════════════════════════════════════════════════════════════


def revise(
    doc_code: str,
    header_id: int,
    actor,
    *,
    lines,
    attachment=None,
    replace_attachment: bool = False,
    header_fields: dict | None = None,
    expected_version: int | None = None,
) -> dict:
    """Replace the line set of a rejected (or revisable) document and restart approval.

    The discarded lines are kept in the Revised history row's snapshot.
    ``header_fields`` carries type-specific header values already validated
    by the caller (``supplier_id`` for STF, invoice data for OTF).

    Raises:
        ForbiddenError: actor is not the creator.
        InvalidTransitionError: status not revisable, or current lines
            already consumed downstream.
        ValidationError / QuantityExceededError: new lines invalid.
    """
    dtype = get_document_type(doc_code)
    inputs = parse_line_inputs(lines)
    with atomic(dtype.code):
        header = _load_for_update(dtype, actor.tenant_id, header_id)
        check_revise(header, actor).raise_if_denied(header)

        current_line_ids = [line.id for line in header.lines]
        if has_downstream_consumption(dtype.code, current_line_ids):
            raise InvalidTransitionError(
                header.doc_number, "revise", header.status,
                "lines are already consumed by downstream documents",
            )

        new_lines = build_lines(
            dtype.code, header.tenant_id, header.project_id, header.discipline_id, inputs,
            exclude_header_id=header.id,
        )
        _claim_version(dtype, header, expected_version)

        from_status = header.status
        snapshot = {
            "previous_status": from_status,
            "previous_level": header.current_approval_level,
            "previous_lines": [line.snapshot() for line in header.lines],
        }

        auto_approved = header.project.max_approval_level(dtype.code) == 0
        new_status = APPROVED if auto_approved else PENDING
        for line in new_lines:
            line.status = new_status
            line.current_approval_level = 0

        header.lines = new_lines
        header.current_approval_level = 0
        header.status = new_status
        for field, value in (header_fields or {}).items():
            setattr(header, field, value)
        if replace_attachment:
            header.attachment = attachment

        db.session.flush()
        entry = write_history(
            header, action=HistoryAction.REVISED, actor_id=actor.id,
            from_status=from_status, to_status=header.status,
            details=f"{dtype.code} revised and resubmitted for approval.",
            snapshot=snapshot,
        )
        _log_transition("revised", header, actor, replaced_lines=len(current_line_ids))
        payload = _result(header, entry)
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# Close
# ═════════════════════════════════════════════════════════════════════════════


def close(doc_code: str, header_id: int, actor, *, expected_version: int | None = None) -> dict:
    """Creator acknowledges a rejection; the document's quantities are released upstream."""
    dtype = get_document_type(doc_code)
    with atomic(dtype.code):
        header = _load_for_update(dtype, actor.tenant_id, header_id)
        check_close(header, actor).raise_if_denied(header)
        _claim_version(dtype, header, expected_version)

        header.status = CLOSED
        entry = write_history(
            header, action=HistoryAction.CLOSED, actor_id=actor.id,
            from_status=REJECTED, to_status=CLOSED,
            details=f"{dtype.code} rejection acknowledged by initiator.",
        )
        _log_transition("closed", header, actor)
        payload = _result(header, entry)
    return payload
