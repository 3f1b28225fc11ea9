"""
Master data referenced by workflow documents.

Models:
    - Discipline: budget line a document is charged against (gates approvals).
    - Supplier:   vendor an STF is placed with.
    - Item:       item library entry an MTF line requests.
"""

from procurement.models import db
from procurement.models.base import TenantModel


class Discipline(TenantModel):
    """Discipline + budget pair. Approvers are assigned per discipline."""

    __tablename__ = "disciplines"

    id = db.Column(db.Integer, primary_key=True)
    discipline_code = db.Column(db.String(50), nullable=False)
    discipline_name = db.Column(db.String(200), nullable=False)
    budget_code = db.Column(db.String(50), nullable=False, default="")
    budget_name = db.Column(db.String(200), nullable=False, default="")

    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "discipline_code", "budget_code",
            name="uq_disciplines_tenant_code_budget",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "discipline_code": self.discipline_code,
            "discipline_name": self.discipline_name,
            "budget_code": self.budget_code,
            "budget_name": self.budget_name,
        }


class Supplier(TenantModel):
    __tablename__ = "suppliers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    contact_person = db.Column(db.String(200))
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "is_active": self.is_active,
        }


class Item(TenantModel):
    """Item library entry. ``budget_unit_price`` seeds MTF line estimates."""

    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True)
    material_code = db.Column(db.String(80), nullable=False)
    material_name = db.Column(db.String(200), nullable=False)
    material_description = db.Column(db.Text)
    unit = db.Column(db.String(20), nullable=False, default="pcs")
    budget_unit_price = db.Column(db.Numeric(18, 4), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "material_code", name="uq_items_tenant_code"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "material_code": self.material_code,
            "material_name": self.material_name,
            "material_description": self.material_description,
            "unit": self.unit,
            "budget_unit_price": (
                float(self.budget_unit_price) if self.budget_unit_price is not None else None
            ),
        }
