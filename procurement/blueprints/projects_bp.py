"""
Projects Blueprint — project master data and approval ceilings.

Endpoints:
    POST   /api/v1/projects            Administrator only
    GET    /api/v1/projects            administrators see all, others their assignments
    GET    /api/v1/projects/<id>
    PUT    /api/v1/projects/<id>       Administrator only; ceilings validated in service
"""

from flask import Blueprint, g, jsonify, request

from procurement.services import project_service
from procurement.utils.errors import E, api_error

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")


def _json_object():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data


@projects_bp.route("", methods=["POST"])
def create_project():
    data = _json_object()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    for field in ("code", "name"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"Field '{field}' is required.")
    return jsonify(project_service.create_project(g.actor, data)), 201


@projects_bp.route("", methods=["GET"])
def list_projects():
    items = project_service.list_projects(g.actor)
    return jsonify({"items": items, "total": len(items)}), 200


@projects_bp.route("/<int:project_id>", methods=["GET"])
def get_project(project_id: int):
    return jsonify(project_service.get_project(g.actor.tenant_id, project_id)), 200


@projects_bp.route("/<int:project_id>", methods=["PUT"])
def update_project(project_id: int):
    data = _json_object()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a non-empty JSON object")
    return jsonify(project_service.update_project(g.actor, project_id, data)), 200
