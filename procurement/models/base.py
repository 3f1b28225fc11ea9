"""
TenantModel — abstract base for every tenant-owned table.

Projects, master data, workflow documents, history rows and number
sequences all carry a ``tenant_id``; nothing in the service layer may read
them without filtering on it. Subclasses get:

  - ``tenant_id`` FK column (indexed, cascades with the tenant)
  - ``select_for_tenant(tenant_id)`` 2.0-style SELECT pre-filtered by tenant
"""

from sqlalchemy import select

from procurement.models import db


class TenantModel(db.Model):
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def select_for_tenant(cls, tenant_id: int):
        """``select(cls)`` restricted to one tenant; callers chain further filters."""
        return select(cls).where(cls.tenant_id == tenant_id)
