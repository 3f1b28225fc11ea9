"""
Procurement Workflow Service
Flask Application Factory.

Usage:
    from procurement import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine
from sqlalchemy.exc import SQLAlchemyError

from procurement.config import config
from procurement.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    QuantityExceededError,
    StaleStateError,
    ValidationError,
)
from procurement.middleware.actor_context import init_actor_context
from procurement.middleware.logging_config import configure_logging
from procurement.middleware.rate_limiter import init_rate_limits
from procurement.middleware.timing import init_request_timing
from procurement.models import db
from procurement.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def _register_error_handlers(app):
    """Map the platform exception hierarchy to the standard error body once."""

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        logger.info("Not found: %s", exc)
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(QuantityExceededError)
    def _quantity_exceeded(exc):
        return api_error(E.QUANTITY_EXCEEDED, str(exc), details=exc.details)

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(exc):
        return api_error(E.INVALID_TRANSITION, str(exc), details=exc.details)

    @app.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.BUSINESS_RULE, str(exc), details=exc.details)

    @app.errorhandler(ForbiddenError)
    def _forbidden(exc):
        logger.info("Forbidden %s: %s", exc.action, exc.reason)
        return api_error(
            E.FORBIDDEN, str(exc),
            details={"action": exc.action, "check": exc.check, "reason": exc.reason},
        )

    @app.errorhandler(StaleStateError)
    def _stale(exc):
        return api_error(
            E.CONFLICT_STALE, str(exc),
            details={
                "retryable": True,
                "expected_version": exc.expected_version,
                "actual_version": exc.actual_version,
            },
        )

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(
            E.CONFLICT_DUPLICATE, str(exc),
            details={"field": exc.field, "retryable": exc.retryable},
        )

    @app.errorhandler(SQLAlchemyError)
    def _database_error(exc):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.PAYLOAD_TOO_LARGE, "Request body too large")

    @app.errorhandler(415)
    def _unsupported(e):
        return api_error(E.UNSUPPORTED_MEDIA, "Content-Type must be application/json")

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413)
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415)

    # ── Actor context (sets g.actor from identity headers) ───────────────
    init_actor_context(app)

    # ── Rate limiter (its before_request hook runs after g.actor is set) ──
    limiter.init_app(app)

    # ── Import all models so Alembic and create_all see them ─────────────
    from procurement.models import auth as _auth_models             # noqa: F401
    from procurement.models import project as _project_models       # noqa: F401
    from procurement.models import master_data as _master_models    # noqa: F401
    from procurement.models import documents as _document_models    # noqa: F401
    from procurement.models import history as _history_models       # noqa: F401
    from procurement.models import sequence as _sequence_models     # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if config_name != "testing" and app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from procurement.blueprints.documents_bp import documents_bp
    from procurement.blueprints.health_bp import health_bp
    from procurement.blueprints.projects_bp import projects_bp
    from procurement.blueprints.reporting_bp import reporting_bp

    app.register_blueprint(documents_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(reporting_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    _register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Seed a demo tenant with roles, users, a project and master data."""
        from procurement.services.demo_seed import seed_demo
        summary = seed_demo()
        logger.info("Demo data ready: %s", summary)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
