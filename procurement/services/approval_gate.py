"""
Approval Gate — decides whether an actor may act on a document right now.

Pure functions of (document, actor, project): no queries, no writes, never
raise. Every check returns a GateResult naming the first check that failed,
so callers can both render buttons (``capabilities``) and refuse requests
with an auditable reason (the engine re-runs the same checks server-side).

Approve checks, all required:
    status      document is Pending Approval
    max_level   current_approval_level + 1 <= project ceiling for the type
    discipline  actor is assigned to the document's discipline
    project     actor is assigned to the document's project
    role_level  actor holds "<TYPE> Approver" at exactly the required level

Reject uses the same checks with role_level relaxed to "at or above the
required level". Revise and close are creator-only.
"""

from __future__ import annotations

from dataclasses import dataclass

from procurement.core.exceptions import ForbiddenError, InvalidTransitionError
from procurement.models.documents import WorkflowStatus
from procurement.services.doc_types import document_type_of

# Checks that describe the document's state rather than the actor's rights.
STATE_CHECKS = frozenset({"status", "max_level"})


@dataclass(frozen=True)
class GateResult:
    action: str
    allowed: bool
    failed_check: str | None = None
    reason: str | None = None
    required_level: int | None = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "failed_check": self.failed_check,
            "reason": self.reason,
            "required_level": self.required_level,
        }

    def raise_if_denied(self, document) -> None:
        """Turn a refusal into the matching platform exception.

        State failures are workflow violations (422); everything else is a
        permission failure (403).
        """
        if self.allowed:
            return
        if self.failed_check in STATE_CHECKS:
            raise InvalidTransitionError(
                document.doc_number, self.action, document.status, self.reason,
            )
        raise ForbiddenError(self.action, self.failed_check, self.reason)


def _deny(action: str, check: str, reason: str, required_level: int | None = None) -> GateResult:
    return GateResult(
        action=action, allowed=False, failed_check=check, reason=reason,
        required_level=required_level,
    )


def _approval_checks(document, actor, project, action: str) -> GateResult:
    """Checks 1-4 shared by approve and reject; returns the required level on success."""
    dtype = document_type_of(document)
    required_level = (document.current_approval_level or 0) + 1

    if actor.tenant_id != document.tenant_id:
        return _deny(action, "tenant", "actor belongs to another tenant", required_level)

    if document.status != WorkflowStatus.PENDING_APPROVAL.value:
        return _deny(
            action, "status",
            f"document is '{document.status}', not '{WorkflowStatus.PENDING_APPROVAL.value}'",
            required_level,
        )

    max_level = project.max_approval_level(dtype.code)
    if required_level > max_level:
        return _deny(
            action, "max_level",
            f"level {required_level} exceeds project maximum {max_level}",
            required_level,
        )

    if document.discipline_id not in actor.discipline_ids:
        return _deny(action, "discipline", "actor is not assigned to the document's discipline", required_level)

    if document.project_id not in actor.project_ids:
        return _deny(action, "project", "actor is not assigned to the document's project", required_level)

    return GateResult(action=action, allowed=True, required_level=required_level)


def check_approve(document, actor, project) -> GateResult:
    result = _approval_checks(document, actor, project, "approve")
    if not result:
        return result

    role = document_type_of(document).approver_role
    if not actor.has_role(role, result.required_level):
        return _deny(
            "approve", "role_level",
            f"actor does not hold '{role}' at level {result.required_level}",
            result.required_level,
        )
    return result


def can_approve(document, actor, project) -> bool:
    """True iff all approval checks pass for the actor at the next level."""
    return bool(check_approve(document, actor, project))


def check_reject(document, actor, project) -> GateResult:
    result = _approval_checks(document, actor, project, "reject")
    if not result:
        return result

    role = document_type_of(document).approver_role
    if not any(level >= result.required_level for level in actor.role_levels(role)):
        return _deny(
            "reject", "role_level",
            f"actor does not hold '{role}' at level {result.required_level} or above",
            result.required_level,
        )
    return result


def check_revise(document, actor) -> GateResult:
    dtype = document_type_of(document)
    if actor.tenant_id != document.tenant_id:
        return _deny("revise", "tenant", "actor belongs to another tenant")
    if document.status not in dtype.revisable_statuses:
        return _deny(
            "revise", "status",
            f"{dtype.code} can only be revised from {', '.join(sorted(dtype.revisable_statuses))}",
        )
    if document.created_by != actor.id:
        return _deny("revise", "creator", "only the initiator can revise the document")
    return GateResult(action="revise", allowed=True)


def check_close(document, actor) -> GateResult:
    if actor.tenant_id != document.tenant_id:
        return _deny("close", "tenant", "actor belongs to another tenant")
    if document.status != WorkflowStatus.REJECTED.value:
        return _deny("close", "status", "only rejected documents can be closed")
    if document.created_by != actor.id:
        return _deny("close", "creator", "only the initiator can close the document")
    return GateResult(action="close", allowed=True)


def capabilities(document, actor, project) -> dict:
    """Which workflow actions the actor may take on the document right now."""
    return {
        "approve": check_approve(document, actor, project).to_dict(),
        "reject": check_reject(document, actor, project).to_dict(),
        "revise": check_revise(document, actor).to_dict(),
        "close": check_close(document, actor).to_dict(),
    }
