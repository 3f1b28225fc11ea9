"""
Demo data for local development (``flask seed-demo``).

Idempotent: every entity is looked up by its natural key first, so running
the command twice leaves one copy of everything.
"""

import logging
from decimal import Decimal

from sqlalchemy import select

from procurement.models import db
from procurement.models.auth import (
    APPROVER_ROLES,
    INITIATOR_ROLES,
    ROLE_ADMINISTRATOR,
    ROLE_REQUESTER,
    ROLE_VIEWER,
    Role,
    Tenant,
    User,
)
from procurement.models.master_data import Discipline, Item, Supplier
from procurement.models.project import Project

logger = logging.getLogger(__name__)

DEMO_TENANT_SLUG = "demo"
APPROVAL_LEVELS = (1, 2)

DEMO_ITEMS = [
    ("PIPE-0100", "Carbon steel pipe 4in", "m", Decimal("42.50")),
    ("VALV-0200", "Gate valve DN100", "pcs", Decimal("310.00")),
    ("CABL-0300", "Power cable 3x95mm2", "m", Decimal("18.75")),
]


def _get_or_create(model, defaults=None, **keys):
    instance = db.session.execute(select(model).filter_by(**keys)).scalar_one_or_none()
    if instance is not None:
        return instance, False
    instance = model(**keys, **(defaults or {}))
    db.session.add(instance)
    db.session.flush()
    return instance, True


def ensure_roles() -> dict:
    """Create the fixed role catalogue; approver roles exist per level."""
    roles = {}
    for name in (ROLE_ADMINISTRATOR, ROLE_REQUESTER, ROLE_VIEWER, *sorted(INITIATOR_ROLES)):
        roles[(name, None)], _ = _get_or_create(Role, name=name, level=None)
    for name in sorted(APPROVER_ROLES):
        for level in APPROVAL_LEVELS:
            roles[(name, level)], _ = _get_or_create(Role, name=name, level=level)
    return roles


def seed_demo() -> dict:
    """Seed one demo tenant and return a summary of what exists afterwards."""
    tenant, created = _get_or_create(Tenant, name="Demo Construction Co.", slug=DEMO_TENANT_SLUG)
    roles = ensure_roles()

    project, _ = _get_or_create(
        Project, tenant_id=tenant.id, code="PRJ-001",
        defaults={
            "name": "Demo Refinery Expansion",
            "country": "Saudi Arabia",
            "base_currency": "USD",
            "max_mtf_approval_level": 2,
            "max_stf_approval_level": 1,
            "max_otf_approval_level": 1,
            "max_mrf_approval_level": 1,
        },
    )
    discipline, _ = _get_or_create(
        Discipline, tenant_id=tenant.id, discipline_code="MECH", budget_code="B-100",
        defaults={"discipline_name": "Mechanical", "budget_name": "Mechanical CAPEX"},
    )
    _get_or_create(
        Supplier, tenant_id=tenant.id, name="Gulf Industrial Supply",
        defaults={"contact_person": "Procurement Desk", "email": "orders@gulf-supply.example"},
    )
    for code, name, unit, price in DEMO_ITEMS:
        _get_or_create(
            Item, tenant_id=tenant.id, material_code=code,
            defaults={"material_name": name, "unit": unit, "budget_unit_price": price},
        )

    people = {
        "admin@demo.example": ("Ada", "Admin", [(ROLE_ADMINISTRATOR, None)]),
        "requester@demo.example": ("Rami", "Requester", [(ROLE_REQUESTER, None)]),
        "approver1@demo.example": ("Lina", "Levelone", [(r, 1) for r in sorted(APPROVER_ROLES)]),
        "approver2@demo.example": ("Omar", "Leveltwo", [(r, 2) for r in sorted(APPROVER_ROLES)]),
        "buyer@demo.example": ("Sara", "Buyer", [(r, None) for r in sorted(INITIATOR_ROLES)]),
    }
    for email, (first, last, grants) in people.items():
        user, new_user = _get_or_create(
            User, tenant_id=tenant.id, email=email,
            defaults={"first_name": first, "last_name": last},
        )
        if new_user:
            user.roles = [roles[g] for g in grants]
            user.projects = [project]
            user.disciplines = [discipline]

    db.session.commit()
    logger.info("Demo tenant %s ready (created=%s)", tenant.slug, created, extra={"tenant_id": tenant.id})
    return {"tenant_id": tenant.id, "project_id": project.id, "discipline_id": discipline.id, "created": created}
