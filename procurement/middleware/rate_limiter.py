"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in procurement/__init__.py with no default limits; this module
applies limits per route category.

Usage:
    from procurement.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def tenant_rate_limit_key():
    """Limit per tenant when the actor is known, else per remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"tenant:{actor.tenant_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Workflow + project endpoints:  60/minute  (every call may write)
        - Reporting endpoints:          200/minute
        - Health check:                 exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("documents", "projects"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=tenant_rate_limit_key)(bp)

    bp = app.blueprints.get("reporting")
    if bp:
        limiter.limit(READ_LIMIT, key_func=tenant_rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured, write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
