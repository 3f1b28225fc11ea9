"""Per-tenant document number sequences (MTF-0001, STF-0001, ...)."""

from procurement.models import db
from procurement.models.base import TenantModel


class DocumentSequence(TenantModel):
    """Last issued number per (tenant, document type).

    The row is locked ``FOR UPDATE`` while a number is issued so concurrent
    creations in one tenant are serialized.
    """

    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "doc_type", name="uq_document_sequences_tenant_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    doc_type = db.Column(db.String(10), nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<DocumentSequence tenant={self.tenant_id} {self.doc_type}={self.last_value}>"
