"""
Document history — immutable, append-only audit trail of workflow actions.

One table serves every document type; ``doc_type`` + ``document_id`` is the
polymorphic reference. The doc_number is denormalised so the trail stays
readable even if the document is later renumbered or removed.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import event

from procurement.models import db
from procurement.models.base import TenantModel


class HistoryAction(str, Enum):
    CREATED = "Created"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    REVISED = "Revised"
    CLOSED = "Closed"


HISTORY_ACTIONS = frozenset(a.value for a in HistoryAction)


class DocumentHistory(TenantModel):
    """
    One row per workflow transition.

    Business rules:
    - Rows are NEVER updated or deleted; the ORM refuses both.
    - Exactly one row is written per transition, inside the transition's
      own transaction.
    - ``snapshot_json`` carries discarded state (e.g. the line set replaced
      by a revision) so nothing is lost from the audit trail.
    """

    __tablename__ = "document_history"
    __table_args__ = (
        db.Index("ix_history_document", "doc_type", "document_id"),
        db.Index("ix_history_tenant_type", "tenant_id", "doc_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    doc_type = db.Column(db.String(10), nullable=False, comment="MTF | STF | OTF | MRF")
    document_id = db.Column(db.Integer, nullable=False)
    doc_number = db.Column(db.String(30), nullable=False)
    action = db.Column(
        db.String(20), nullable=False,
        comment="Created | Approved | Rejected | Revised | Closed",
    )
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    from_status = db.Column(db.String(30), nullable=True)
    to_status = db.Column(db.String(30), nullable=False)
    details = db.Column(db.Text, nullable=False, default="")
    snapshot_json = db.Column(db.Text, nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def snapshot(self) -> dict | None:
        if not self.snapshot_json:
            return None
        try:
            return json.loads(self.snapshot_json)
        except (json.JSONDecodeError, TypeError):
            return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "doc_type": self.doc_type,
            "document_id": self.document_id,
            "doc_number": self.doc_number,
            "action": self.action,
            "actor_id": self.actor_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "details": self.details,
            "snapshot": self.snapshot,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<DocumentHistory {self.id}: {self.doc_number} {self.action}>"


class ImmutableHistoryError(RuntimeError):
    """Raised when code attempts to modify or delete a history row."""


@event.listens_for(DocumentHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise ImmutableHistoryError(f"DocumentHistory id={target.id} is append-only")


@event.listens_for(DocumentHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise ImmutableHistoryError(f"DocumentHistory id={target.id} cannot be deleted")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_history(
    document,
    *,
    action: HistoryAction,
    actor_id: int,
    from_status: str | None,
    to_status: str,
    details: str,
    snapshot: dict | None = None,
) -> DocumentHistory:
    """
    Append a single history row for ``document``. Uses ``flush`` so the
    caller keeps transaction control.
    """
    entry = DocumentHistory(
        tenant_id=document.tenant_id,
        project_id=document.project_id,
        doc_type=document.doc_type,
        document_id=document.id,
        doc_number=document.doc_number,
        action=action.value,
        actor_id=actor_id,
        from_status=from_status,
        to_status=to_status,
        details=details,
        snapshot_json=json.dumps(snapshot, default=str) if snapshot is not None else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
