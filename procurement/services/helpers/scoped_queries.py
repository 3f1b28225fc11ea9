"""
Tenant-scoped query helpers.

Every get-by-id in the service layer MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls bypass
tenant isolation.

Usage:
    project = get_scoped(Project, project_id, tenant_id=tenant_id)
    header = get_scoped(MTFHeader, header_id, tenant_id=tenant_id, for_update=True)
    supplier = get_scoped_or_none(Supplier, supplier_id, tenant_id=tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model. If
    the model does not have that column, a ValueError is raised at call time
    so the bug surfaces during development rather than silently allowing an
    unscoped lookup.
"""

import logging

from sqlalchemy import select

from procurement.core.exceptions import NotFoundError
from procurement.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    tenant_id: int | None = None,
    project_id: int | None = None,
    for_update: bool = False,
    resource: str | None = None,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        tenant_id: Scope by tenant_id column.
        project_id: Scope by project_id column.
        for_update: Lock the row (``SELECT ... FOR UPDATE``) for the rest of
            the transaction.
        resource: Name used in the NotFoundError; defaults to the class name.

    Raises:
        ValueError: If no scope is given, or a scope names a missing column.
        NotFoundError: If the entity does not exist OR belongs to another scope.
    """
    provided_scopes = {
        k: v for k, v in {"tenant_id": tenant_id, "project_id": project_id}.items()
        if v is not None
    }
    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(tenant_id or project_id). Unscoped lookups are forbidden."
        )

    missing_fields = [f for f in provided_scopes if not hasattr(model, f)]
    if missing_fields:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {sorted(missing_fields)}; "
            "refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, provided_scopes)
        raise NotFoundError(resource=resource or model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int | None = None, project_id: int | None = None):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, project_id=project_id)
    except NotFoundError:
        return None
