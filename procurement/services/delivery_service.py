"""
Delivery Service — Material Delivery Form (MDF) issues.

An MDF issues received material to site. It has no approval chain: it is
created Delivered in one step, but its lines still consume MRF line backlog
through the same ledger as every other tier.
"""

from __future__ import annotations

import logging

from procurement.core.exceptions import ForbiddenError
from procurement.models import db
from procurement.models.documents import MDFIssue, WorkflowStatus
from procurement.models.master_data import Discipline
from procurement.models.project import Project
from procurement.services.code_generator import next_document_number
from procurement.services.document_service import require_assignment
from procurement.services.helpers.scoped_queries import get_scoped
from procurement.services.line_builder import build_lines, parse_line_inputs
from procurement.utils.helpers import atomic

logger = logging.getLogger(__name__)

# Receiving and issuing are handled by the same site team.
MDF_ISSUER_ROLE = "MRF Initiator"


def create_mdf_issue(actor, *, project_id: int, discipline_id: int, lines) -> dict:
    if not (actor.is_admin or actor.has_role(MDF_ISSUER_ROLE)):
        raise ForbiddenError(
            "create MDF", "role", f"issuing an MDF requires the '{MDF_ISSUER_ROLE}' role",
        )
    inputs = parse_line_inputs(lines)
    tenant_id = actor.tenant_id

    with atomic("MDF"):
        project = get_scoped(Project, project_id, tenant_id=tenant_id, resource="Project")
        discipline = get_scoped(Discipline, discipline_id, tenant_id=tenant_id, resource="Discipline")
        require_assignment(actor, "create MDF", project.id, discipline.id)

        new_lines = build_lines("MDF", tenant_id, project.id, discipline.id, inputs)
        issue = MDFIssue(
            tenant_id=tenant_id,
            doc_number=next_document_number(tenant_id, "MDF"),
            project_id=project.id,
            discipline_id=discipline.id,
            created_by=actor.id,
            status=WorkflowStatus.DELIVERED.value,
            lines=new_lines,
        )
        db.session.add(issue)
        db.session.flush()
        logger.info(
            "%s issued by user %s with %d line(s)", issue.doc_number, actor.id, len(new_lines),
            extra={
                "tenant_id": tenant_id, "project_id": project.id, "doc_type": "MDF",
                "document_id": issue.id, "actor_id": actor.id,
            },
        )
        payload = issue.to_dict()
    return payload


def get_mdf_issue(tenant_id: int, issue_id: int) -> dict:
    return get_scoped(MDFIssue, issue_id, tenant_id=tenant_id, resource="MDF").to_dict()
