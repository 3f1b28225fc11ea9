"""Project domain model — the tenant-scoped unit that owns approval ceilings."""

from datetime import datetime, timezone

from procurement.models import db
from procurement.models.base import TenantModel

CURRENCIES = frozenset({"USD", "EUR", "GBP", "CAD", "SAR", "RUB", "TRY"})

# Document type code → Project column holding its approval ceiling.
MAX_LEVEL_COLUMNS = {
    "MTF": "max_mtf_approval_level",
    "STF": "max_stf_approval_level",
    "OTF": "max_otf_approval_level",
    "MRF": "max_mrf_approval_level",
}


class Project(TenantModel):
    """Execution unit that documents are raised against.

    Each document type has its own approval ceiling. A ceiling of 0 means
    documents of that type need no approval.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    country = db.Column(db.String(100), nullable=True)
    base_currency = db.Column(db.String(3), nullable=False, default="USD")

    max_mtf_approval_level = db.Column(db.Integer, nullable=False, default=1)
    max_stf_approval_level = db.Column(db.Integer, nullable=False, default=1)
    max_otf_approval_level = db.Column(db.Integer, nullable=False, default=1)
    max_mrf_approval_level = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_projects_tenant_code"),
    )

    def max_approval_level(self, doc_type: str) -> int:
        """Return the approval ceiling for a document type code (``"MTF"`` …)."""
        return getattr(self, MAX_LEVEL_COLUMNS[doc_type])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "name": self.name,
            "country": self.country,
            "base_currency": self.base_currency,
            "max_mtf_approval_level": self.max_mtf_approval_level,
            "max_stf_approval_level": self.max_stf_approval_level,
            "max_otf_approval_level": self.max_otf_approval_level,
            "max_mrf_approval_level": self.max_mrf_approval_level,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.code}>"
