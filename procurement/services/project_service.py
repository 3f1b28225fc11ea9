"""
Project Service — project master data and per-type approval ceilings.

Ceilings (``max_<type>_approval_level``) can only change through
``update_project``. A ceiling may not drop to or below the level already
reached by a pending document of that type, otherwise the document could
never be approved. Nor may it drop below the level of any other document
that is not Closed.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, or_

from procurement.core.exceptions import ConflictError, ForbiddenError, InvalidTransitionError, ValidationError
from procurement.models import db
from procurement.models.documents import WorkflowStatus
from procurement.models.project import CURRENCIES, MAX_LEVEL_COLUMNS, Project
from procurement.services.doc_types import get_document_type
from procurement.services.helpers.scoped_queries import get_scoped
from procurement.utils.helpers import atomic

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "country", "base_currency")


def _require_admin(actor, action: str) -> None:
    if not actor.is_admin:
        raise ForbiddenError(action, "role", "project administration requires the 'Administrator' role")


def _validate_levels(data: dict) -> dict:
    levels = {}
    for column in MAX_LEVEL_COLUMNS.values():
        if column not in data:
            continue
        value = data[column]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                f"{column} must be a non-negative integer", details={column: value},
            )
        levels[column] = value
    return levels


def _validate_currency(value) -> str:
    currency = str(value or "").upper()
    if currency not in CURRENCIES:
        raise ValidationError(
            f"base_currency must be one of: {', '.join(sorted(CURRENCIES))}",
            details={"base_currency": value},
        )
    return currency


def _code_taken(tenant_id: int, code: str) -> bool:
    return db.session.execute(
        Project.select_for_tenant(tenant_id).where(Project.code == code)
    ).scalar_one_or_none() is not None


def create_project(actor, data: dict) -> dict:
    _require_admin(actor, "create project")
    code = (data.get("code") or "").strip()
    name = (data.get("name") or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required", details={"code": code, "name": name})

    levels = _validate_levels(data)
    currency = _validate_currency(data.get("base_currency", "USD"))

    with atomic("Project"):
        if _code_taken(actor.tenant_id, code):
            raise ConflictError("Project", "code", code)
        project = Project(
            tenant_id=actor.tenant_id,
            code=code,
            name=name,
            country=(data.get("country") or "").strip() or None,
            base_currency=currency,
            **levels,
        )
        db.session.add(project)
        db.session.flush()
        logger.info(
            "Project %s created", project.code,
            extra={"tenant_id": actor.tenant_id, "project_id": project.id, "actor_id": actor.id},
        )
        payload = project.to_dict()
    return payload


def _assert_ceiling_safe(project: Project, column: str, new_level: int) -> None:
    doc_code = next(code for code, col in MAX_LEVEL_COLUMNS.items() if col == column)
    model = get_document_type(doc_code).header_model
    blocking = db.session.execute(
        model.select_for_tenant(project.tenant_id)
        .where(
            model.project_id == project.id,
            or_(
                and_(
                    model.status == WorkflowStatus.PENDING_APPROVAL.value,
                    model.current_approval_level >= new_level,
                ),
                and_(
                    model.status != WorkflowStatus.CLOSED.value,
                    model.current_approval_level > new_level,
                ),
            ),
        )
        .order_by(model.current_approval_level.desc())
        .limit(1)
    ).scalar_one_or_none()
    if blocking is None:
        return
    if blocking.status == WorkflowStatus.PENDING_APPROVAL.value:
        reason = (
            f"document is pending at L{blocking.current_approval_level}; "
            f"{column} must stay above that level"
        )
    else:
        reason = (
            f"document reached L{blocking.current_approval_level}; "
            f"{column} cannot drop below that level"
        )
    raise InvalidTransitionError(blocking.doc_number, f"lower {column}", blocking.status, reason)


def update_project(actor, project_id: int, data: dict) -> dict:
    _require_admin(actor, "update project")
    levels = _validate_levels(data)

    with atomic("Project"):
        project = get_scoped(Project, project_id, tenant_id=actor.tenant_id, for_update=True, resource="Project")

        for column, new_level in levels.items():
            if new_level < getattr(project, column):
                _assert_ceiling_safe(project, column, new_level)
            setattr(project, column, new_level)

        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("name cannot be empty", details={"name": data.get("name")})
            project.name = name
        if "country" in data:
            project.country = (data.get("country") or "").strip() or None
        if "base_currency" in data:
            project.base_currency = _validate_currency(data["base_currency"])

        db.session.flush()
        logger.info(
            "Project %s updated (%s)", project.code, ", ".join(sorted(set(data) & (set(levels) | set(EDITABLE_FIELDS)))),
            extra={"tenant_id": actor.tenant_id, "project_id": project.id, "actor_id": actor.id},
        )
        payload = project.to_dict()
    return payload


def get_project(tenant_id: int, project_id: int) -> dict:
    return get_scoped(Project, project_id, tenant_id=tenant_id, resource="Project").to_dict()


def list_projects(actor) -> list[dict]:
    """Projects visible to the actor: all for administrators, assigned ones otherwise."""
    stmt = Project.select_for_tenant(actor.tenant_id).order_by(Project.code)
    if not actor.is_admin:
        stmt = stmt.where(Project.id.in_(actor.project_ids or [-1]))
    return [p.to_dict() for p in db.session.execute(stmt).scalars()]
