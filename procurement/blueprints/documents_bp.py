"""
Documents Blueprint — the HTTP surface of the approval workflow.

All routes act as ``g.actor`` (resolved by the actor context middleware)
and are tenant-scoped through it. ``<doc_type>`` is one of mtf, stf, otf, mrf.

Endpoints:
    POST   /api/v1/documents/<doc_type>
           Body: { "project_id", "discipline_id", "lines": [...],
                   "attachment"?, "supplier_id"? (STF), "invoice_no"?, "invoice_date"? (OTF) }
           Returns: 201 { "document", "history" }

    GET    /api/v1/documents/<doc_type>
           Query: project_id, status, pending=true
    GET    /api/v1/documents/<doc_type>/<id>
    GET    /api/v1/documents/<doc_type>/<id>/capabilities
    GET    /api/v1/documents/<doc_type>/<id>/history

    POST   /api/v1/documents/<doc_type>/<id>/approve   { "expected_version"? }
    POST   /api/v1/documents/<doc_type>/<id>/reject    { "line_ids"?, "comment"?, "expected_version"? }
    POST   /api/v1/documents/<doc_type>/<id>/revise    { "lines", "attachment"?, header fields?, "expected_version"? }
    POST   /api/v1/documents/<doc_type>/<id>/close     { "expected_version"? }
           Returns: 200 { "document", "history" }

    GET    /api/v1/history/<doc_type>                  tenant-wide history of one type
    GET    /api/v1/lines/<doc_type>/<line_id>/backlog  backlog of an upstream line

    POST   /api/v1/mdf                                 issue material (no approval)
    GET    /api/v1/mdf/<id>

Layer contract:
    - Blueprint: reject malformed input with 400, call the service, return JSON.
    - NO db.session calls here; services own every commit.
    - Business-rule, permission and concurrency errors propagate to the
      app-level handlers (422 / 403 / 409).
"""

import logging

from flask import Blueprint, g, jsonify, request

from procurement.services import approval_engine, delivery_service, document_service
from procurement.services.consumption_ledger import TIERS
from procurement.services.doc_types import DOCUMENT_TYPES, get_document_type
from procurement.utils.errors import E, api_error

logger = logging.getLogger(__name__)

documents_bp = Blueprint("documents", __name__, url_prefix="/api/v1")

HEADER_FIELDS = ("supplier_id", "invoice_no", "invoice_date")


# ── Input helpers ──────────────────────────────────────────────────────────────


class BadRequest(Exception):
    def __init__(self, message: str, code: str = E.VALIDATION_INVALID):
        self.code = code
        super().__init__(message)


@documents_bp.errorhandler(BadRequest)
def _handle_bad_request(exc: BadRequest):
    return api_error(exc.code, str(exc))


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _int_field(data: dict, key: str, *, required: bool = False) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise BadRequest(f"Field '{key}' is required.", E.VALIDATION_REQUIRED)
        return None
    if isinstance(value, bool):
        raise BadRequest(f"Field '{key}' must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequest(f"Field '{key}' must be an integer.") from None


def _lines_field(data: dict) -> list:
    lines = data.get("lines")
    if lines is None:
        raise BadRequest("Field 'lines' is required.", E.VALIDATION_REQUIRED)
    if not isinstance(lines, list):
        raise BadRequest("Field 'lines' must be a list.")
    return lines


def _doc_code(doc_type: str) -> str:
    if doc_type.upper() not in DOCUMENT_TYPES:
        raise BadRequest(
            f"Unknown document type '{doc_type}'. Valid: {', '.join(t.lower() for t in sorted(DOCUMENT_TYPES))}"
        )
    return doc_type.upper()


def _line_doc_code(doc_type: str) -> str:
    if doc_type.upper() not in TIERS:
        raise BadRequest(
            f"Unknown line type '{doc_type}'. Valid: {', '.join(t.lower() for t in sorted(TIERS))}"
        )
    return doc_type.upper()


# ── Create / read ──────────────────────────────────────────────────────────────


@documents_bp.route("/documents/<doc_type>", methods=["POST"])
def create_document(doc_type: str):
    """Create a document at level 0 (or Approved when the project needs no approval)."""
    code = _doc_code(doc_type)
    data = _body()
    result = document_service.create_document(
        code,
        g.actor,
        project_id=_int_field(data, "project_id", required=True),
        discipline_id=_int_field(data, "discipline_id", required=True),
        lines=_lines_field(data),
        attachment=data.get("attachment"),
        **{k: data[k] for k in HEADER_FIELDS if k in data},
    )
    return jsonify(result), 201


@documents_bp.route("/documents/<doc_type>", methods=["GET"])
def list_documents(doc_type: str):
    code = _doc_code(doc_type)
    pending = request.args.get("pending", "").lower() in ("1", "true", "yes")
    items = document_service.list_documents(
        code,
        g.actor,
        project_id=request.args.get("project_id", type=int),
        status=request.args.get("status") or None,
        pending_for_actor=pending,
    )
    return jsonify({"items": items, "total": len(items)}), 200


@documents_bp.route("/documents/<doc_type>/<int:doc_id>", methods=["GET"])
def get_document(doc_type: str, doc_id: int):
    code = _doc_code(doc_type)
    return jsonify(document_service.get_document_detail(code, g.actor, doc_id)), 200


@documents_bp.route("/documents/<doc_type>/<int:doc_id>/capabilities", methods=["GET"])
def get_capabilities(doc_type: str, doc_id: int):
    """Which of approve / reject / revise / close the actor may perform now, and why not."""
    code = _doc_code(doc_type)
    return jsonify(document_service.get_capabilities(code, g.actor, doc_id)), 200


@documents_bp.route("/documents/<doc_type>/<int:doc_id>/history", methods=["GET"])
def get_document_history(doc_type: str, doc_id: int):
    code = _doc_code(doc_type)
    document_service.get_document(code, g.actor.tenant_id, doc_id)
    history = document_service.list_history(code, g.actor.tenant_id, doc_id)
    return jsonify({"history": history, "total": len(history)}), 200


# ── Workflow transitions ───────────────────────────────────────────────────────


@documents_bp.route("/documents/<doc_type>/<int:doc_id>/approve", methods=["POST"])
def approve_document(doc_type: str, doc_id: int):
    code = _doc_code(doc_type)
    data = _body()
    result = approval_engine.approve(
        code, doc_id, g.actor, expected_version=_int_field(data, "expected_version"),
    )
    return jsonify(result), 200


@documents_bp.route("/documents/<doc_type>/<int:doc_id>/reject", methods=["POST"])
def reject_document(doc_type: str, doc_id: int):
    """Reject the whole document, or only ``line_ids`` when given."""
    code = _doc_code(doc_type)
    data = _body()
    line_ids = data.get("line_ids")
    if line_ids is not None:
        if not isinstance(line_ids, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in line_ids
        ):
            raise BadRequest("Field 'line_ids' must be a list of integers.")
    comment = data.get("comment")
    if comment is not None and not isinstance(comment, str):
        raise BadRequest("Field 'comment' must be a string.")

    result = approval_engine.reject(
        code, doc_id, g.actor,
        line_ids=line_ids or None,
        comment=comment,
        expected_version=_int_field(data, "expected_version"),
    )
    return jsonify(result), 200


@documents_bp.route("/documents/<doc_type>/<int:doc_id>/revise", methods=["POST"])
def revise_document(doc_type: str, doc_id: int):
    code = _doc_code(doc_type)
    data = _body()
    lines = _lines_field(data)
    header_fields = document_service.resolve_header_fields(
        get_document_type(code), g.actor.tenant_id, data, partial=True,
    )
    replace_attachment = "attachment" in data
    result = approval_engine.revise(
        code, doc_id, g.actor,
        lines=lines,
        attachment=document_service.validate_attachment(data.get("attachment")),
        replace_attachment=replace_attachment,
        header_fields=header_fields,
        expected_version=_int_field(data, "expected_version"),
    )
    return jsonify(result), 200


@documents_bp.route("/documents/<doc_type>/<int:doc_id>/close", methods=["POST"])
def close_document(doc_type: str, doc_id: int):
    """Initiator acknowledges a rejection."""
    code = _doc_code(doc_type)
    data = _body()
    result = approval_engine.close(
        code, doc_id, g.actor, expected_version=_int_field(data, "expected_version"),
    )
    return jsonify(result), 200


# ── History / ledger ───────────────────────────────────────────────────────────


@documents_bp.route("/history/<doc_type>", methods=["GET"])
def get_type_history(doc_type: str):
    code = _doc_code(doc_type)
    history = document_service.list_history(code, g.actor.tenant_id)
    return jsonify({"history": history, "total": len(history)}), 200


@documents_bp.route("/lines/<doc_type>/<int:line_id>/backlog", methods=["GET"])
def get_line_backlog(doc_type: str, line_id: int):
    code = _line_doc_code(doc_type)
    return jsonify(document_service.get_line_backlog(code, g.actor.tenant_id, line_id)), 200


# ── MDF ────────────────────────────────────────────────────────────────────────


@documents_bp.route("/mdf", methods=["POST"])
def create_mdf():
    data = _body()
    result = delivery_service.create_mdf_issue(
        g.actor,
        project_id=_int_field(data, "project_id", required=True),
        discipline_id=_int_field(data, "discipline_id", required=True),
        lines=_lines_field(data),
    )
    return jsonify(result), 201


@documents_bp.route("/mdf/<int:issue_id>", methods=["GET"])
def get_mdf(issue_id: int):
    return jsonify(delivery_service.get_mdf_issue(g.actor.tenant_id, issue_id)), 200
