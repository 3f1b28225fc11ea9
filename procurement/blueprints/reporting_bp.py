"""
Reporting Blueprint — read-only roll-ups.

Endpoints:
    GET /api/v1/pipeline?project_id=   material pipeline per MTF line
"""

from flask import Blueprint, g, jsonify, request

from procurement.services.pipeline_service import material_pipeline

reporting_bp = Blueprint("reporting", __name__, url_prefix="/api/v1")


@reporting_bp.route("/pipeline", methods=["GET"])
def pipeline():
    rows = material_pipeline(g.actor, project_id=request.args.get("project_id", type=int))
    return jsonify({"items": rows, "total": len(rows)}), 200
