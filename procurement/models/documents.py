"""
Workflow document models.

Every approval-gated document type is a header/line pair built on two
abstract bases:

    DocumentHeader  ── doc_number, project, discipline, creator, status,
                       current_approval_level, version, attachment
    DocumentLine    ── quantity, unit_price, description, status,
                       current_approval_level

Concrete tiers (each line consumes quantity of the tier above it):

    MTFHeader / MTFLine          material request      (line → Item)
    STFOrder  / STFOrderLine     supplier order        (line → MTFLine)
    OTFOrder  / OTFOrderLine     on-the-fly order      (line → STFOrderLine)
    MRFHeader / MRFLine          material receipt      (line → OTFOrderLine)
    MDFIssue  / MDFIssueLine     site delivery         (line → MRFLine, no approval)

Prices and totals are derived on read; only quantities and unit prices are
stored.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import declared_attr

from procurement.models import db
from procurement.models.base import TenantModel


class WorkflowStatus(str, Enum):
    INITIALIZED = "Initialized"
    PENDING_APPROVAL = "Pending Approval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RECEIVED = "Received"
    DELIVERED = "Delivered"
    CLOSED = "Closed"


WORKFLOW_STATUSES = frozenset(s.value for s in WorkflowStatus)


def _num(value) -> float | None:
    return float(value) if value is not None else None


# ═════════════════════════════════════════════════════════════════════════════
# Abstract bases
# ═════════════════════════════════════════════════════════════════════════════


class DocumentHeader(TenantModel):
    """Abstract header of an approval-gated document.

    Subclasses set ``doc_type`` (registry code) and define ``lines``.
    ``version`` is bumped on every workflow transition and is the optimistic
    concurrency token clients echo back as ``expected_version``.
    """

    __abstract__ = True

    doc_type: str = ""

    id = db.Column(db.Integer, primary_key=True)
    doc_number = db.Column(db.String(30), nullable=False)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    discipline_id = db.Column(
        db.Integer, db.ForeignKey("disciplines.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
    )
    date_created = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    status = db.Column(
        db.String(30), nullable=False, default=WorkflowStatus.PENDING_APPROVAL.value,
        comment="Pending Approval | Approved | Rejected | Closed",
    )
    current_approval_level = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)
    attachment = db.Column(
        db.JSON, nullable=True,
        comment="Opaque {file_name, file_type, file_content(base64)}",
    )

    @declared_attr
    def project(cls):
        return db.relationship("Project")

    @declared_attr
    def discipline(cls):
        return db.relationship("Discipline")

    @property
    def total_value(self) -> Decimal:
        return sum((line.total_price for line in self.lines), Decimal("0"))

    def _extra_fields(self) -> dict:
        return {}

    def to_dict(self, include_lines: bool = True, include_attachment: bool = False) -> dict:
        d = {
            "id": self.id,
            "doc_type": self.doc_type,
            "doc_number": self.doc_number,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "discipline_id": self.discipline_id,
            "created_by": self.created_by,
            "date_created": self.date_created.isoformat() if self.date_created else None,
            "status": self.status,
            "current_approval_level": self.current_approval_level,
            "version": self.version,
            "total_value": float(self.total_value),
            "has_attachment": self.attachment is not None,
        }
        d.update(self._extra_fields())
        if include_attachment:
            d["attachment"] = self.attachment
        if include_lines:
            d["lines"] = [line.to_dict() for line in self.lines]
        return d

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.doc_number} {self.status} L{self.current_approval_level}>"


class DocumentLine(db.Model):
    """Abstract line of an approval-gated document.

    A line keeps its own status and level: it mirrors the header at the last
    synchronized approval but can be rejected on its own while siblings stay
    pending.
    """

    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    material_description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=False, default=WorkflowStatus.PENDING_APPROVAL.value)
    current_approval_level = db.Column(db.Integer, nullable=False, default=0)

    @property
    def total_price(self) -> Decimal:
        return Decimal(self.quantity or 0) * Decimal(self.unit_price or 0)

    def _reference_fields(self) -> dict:
        return {"source_line_id": getattr(self, "source_line_id", None)}

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "header_id": self.header_id,
            "quantity": _num(self.quantity),
            "unit_price": _num(self.unit_price),
            "total_price": float(self.total_price),
            "material_description": self.material_description,
            "status": self.status,
            "current_approval_level": self.current_approval_level,
        }
        d.update(self._reference_fields())
        return d

    def snapshot(self) -> dict:
        """Plain-value copy kept in history when the line is discarded."""
        return self.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# MTF: Material Transfer Form
# ═════════════════════════════════════════════════════════════════════════════


class MTFHeader(DocumentHeader):
    __tablename__ = "mtf_headers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "doc_number", name="uq_mtf_headers_tenant_number"),
    )

    doc_type = "MTF"

    lines = db.relationship(
        "MTFLine", back_populates="header", cascade="all, delete-orphan",
        order_by="MTFLine.id", lazy="selectin",
    )


class MTFLine(DocumentLine):
    __tablename__ = "mtf_lines"

    header_id = db.Column(
        db.Integer, db.ForeignKey("mtf_headers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)

    header = db.relationship("MTFHeader", back_populates="lines")
    item = db.relationship("Item")

    def _reference_fields(self) -> dict:
        return {"item_id": self.item_id}


# ═════════════════════════════════════════════════════════════════════════════
# STF: Supplier Transfer Form
# ═════════════════════════════════════════════════════════════════════════════


class STFOrder(DocumentHeader):
    __tablename__ = "stf_orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "doc_number", name="uq_stf_orders_tenant_number"),
    )

    doc_type = "STF"

    supplier_id = db.Column(
        db.Integer, db.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False,
    )

    supplier = db.relationship("Supplier")
    lines = db.relationship(
        "STFOrderLine", back_populates="header", cascade="all, delete-orphan",
        order_by="STFOrderLine.id", lazy="selectin",
    )

    def _extra_fields(self) -> dict:
        return {"supplier_id": self.supplier_id}


class STFOrderLine(DocumentLine):
    __tablename__ = "stf_order_lines"

    header_id = db.Column(
        db.Integer, db.ForeignKey("stf_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source_line_id = db.Column(
        db.Integer, db.ForeignKey("mtf_lines.id", ondelete="RESTRICT"), nullable=False, index=True,
    )

    header = db.relationship("STFOrder", back_populates="lines")
    source_line = db.relationship("MTFLine")


# ═════════════════════════════════════════════════════════════════════════════
# OTF: On-The-Fly order
# ═════════════════════════════════════════════════════════════════════════════


class OTFOrder(DocumentHeader):
    __tablename__ = "otf_orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "doc_number", name="uq_otf_orders_tenant_number"),
    )

    doc_type = "OTF"

    invoice_no = db.Column(db.String(100), nullable=True)
    invoice_date = db.Column(db.Date, nullable=True)

    lines = db.relationship(
        "OTFOrderLine", back_populates="header", cascade="all, delete-orphan",
        order_by="OTFOrderLine.id", lazy="selectin",
    )

    def _extra_fields(self) -> dict:
        return {
            "invoice_no": self.invoice_no,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
        }


class OTFOrderLine(DocumentLine):
    __tablename__ = "otf_order_lines"

    header_id = db.Column(
        db.Integer, db.ForeignKey("otf_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source_line_id = db.Column(
        db.Integer, db.ForeignKey("stf_order_lines.id", ondelete="RESTRICT"), nullable=False, index=True,
    )

    header = db.relationship("OTFOrder", back_populates="lines")
    source_line = db.relationship("STFOrderLine")


# ═════════════════════════════════════════════════════════════════════════════
# MRF: Material Receipt Form
# ═════════════════════════════════════════════════════════════════════════════


class MRFHeader(DocumentHeader):
    __tablename__ = "mrf_headers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "doc_number", name="uq_mrf_headers_tenant_number"),
    )

    doc_type = "MRF"

    lines = db.relationship(
        "MRFLine", back_populates="header", cascade="all, delete-orphan",
        order_by="MRFLine.id", lazy="selectin",
    )


class MRFLine(DocumentLine):
    """Received quantity against an OTF line."""

    __tablename__ = "mrf_lines"

    header_id = db.Column(
        db.Integer, db.ForeignKey("mrf_headers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source_line_id = db.Column(
        db.Integer, db.ForeignKey("otf_order_lines.id", ondelete="RESTRICT"), nullable=False, index=True,
    )

    header = db.relationship("MRFHeader", back_populates="lines")
    source_line = db.relationship("OTFOrderLine")


# ═════════════════════════════════════════════════════════════════════════════
# MDF: Material Delivery Form (issue only, no approval chain)
# ═════════════════════════════════════════════════════════════════════════════


class MDFIssue(TenantModel):
    __tablename__ = "mdf_issues"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "doc_number", name="uq_mdf_issues_tenant_number"),
    )

    doc_type = "MDF"

    id = db.Column(db.Integer, primary_key=True)
    doc_number = db.Column(db.String(30), nullable=False)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    discipline_id = db.Column(
        db.Integer, db.ForeignKey("disciplines.id", ondelete="RESTRICT"), nullable=False,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    date_created = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    status = db.Column(db.String(30), nullable=False, default=WorkflowStatus.DELIVERED.value)

    lines = db.relationship(
        "MDFIssueLine", back_populates="header", cascade="all, delete-orphan",
        order_by="MDFIssueLine.id", lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doc_type": self.doc_type,
            "doc_number": self.doc_number,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "discipline_id": self.discipline_id,
            "created_by": self.created_by,
            "date_created": self.date_created.isoformat() if self.date_created else None,
            "status": self.status,
            "lines": [line.to_dict() for line in self.lines],
        }


class MDFIssueLine(db.Model):
    """Delivered quantity against an MRF line."""

    __tablename__ = "mdf_issue_lines"

    id = db.Column(db.Integer, primary_key=True)
    header_id = db.Column(
        db.Integer, db.ForeignKey("mdf_issues.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source_line_id = db.Column(
        db.Integer, db.ForeignKey("mrf_lines.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    header = db.relationship("MDFIssue", back_populates="lines")
    source_line = db.relationship("MRFLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "header_id": self.header_id,
            "source_line_id": self.source_line_id,
            "quantity": _num(self.quantity),
        }
