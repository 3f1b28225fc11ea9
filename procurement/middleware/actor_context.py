"""
Actor Context Middleware — resolves the calling user for API requests.

Identity is trusted from two request headers set by the fronting gateway:

    X-Tenant-ID   tenant the call is made in
    X-User-Id     user acting within that tenant

For every /api/v1/ request outside the skip list this middleware:
  1. requires both headers (401 otherwise)
  2. verifies the tenant exists and is active (403 otherwise)
  3. loads the user within the tenant and freezes it into ``g.actor``
     (unknown user → 404, deactivated user → 403)

Blueprints read ``g.actor``; services receive the Actor explicitly.

Chain order:
  timing.py  →  actor_context.py  →  Flask-Limiter check  →  route handler
"""

import logging

from flask import g, request

from procurement.core.exceptions import ForbiddenError, NotFoundError
from procurement.models import db
from procurement.models.auth import Tenant
from procurement.services.actor import load_actor
from procurement.utils.errors import E, api_error

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"
USER_HEADER = "X-User-Id"

ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _header_int(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    return int(raw) if raw.isdigit() else None


def init_actor_context(app):
    """Register the actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        if request.method == "OPTIONS":
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        tenant_id = _header_int(TENANT_HEADER)
        user_id = _header_int(USER_HEADER)
        if tenant_id is None or user_id is None:
            return api_error(
                E.UNAUTHENTICATED,
                f"{TENANT_HEADER} and {USER_HEADER} headers are required",
            )

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            logger.warning("Rejected request for unknown or inactive tenant %s", tenant_id,
                           extra={"tenant_id": tenant_id})
            return api_error(E.FORBIDDEN, "Tenant not found or deactivated")

        try:
            g.actor = load_actor(tenant_id, user_id)
        except NotFoundError:
            return api_error(E.NOT_FOUND, "User not found")
        except ForbiddenError as exc:
            return api_error(E.FORBIDDEN, exc.reason, details={"check": exc.check})
        return None

    logger.info("Actor context middleware installed")
