"""
Academic Evidence Portfolio Platform
Flask Application Factory.

Usage:
    from evidence_portfolio import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from evidence_portfolio.config import config
from evidence_portfolio.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    ForbiddenError,
    GenerationFailedError,
    InvalidTransitionError,
    ModuleDisabledError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from evidence_portfolio.middleware.identity import init_identity
from evidence_portfolio.middleware.logging_config import configure_logging
from evidence_portfolio.middleware.rate_limiter import init_rate_limits
from evidence_portfolio.middleware.timing import init_request_timing
from evidence_portfolio.models import db
from evidence_portfolio.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_error_handlers(app):
    """One handler per domain exception type, rendered through api_error."""

    @app.errorhandler(NotFoundError)
    def _not_found(error):
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation(error):
        return api_error(error.code, str(error), status=422, details=error.details)

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(error):
        return api_error(
            E.INVALID_TRANSITION, str(error),
            details={"from": error.from_state, "to": error.to_state},
        )

    @app.errorhandler(ConcurrentModificationError)
    def _concurrent(error):
        return api_error(E.CONCURRENT_MODIFICATION, str(error))

    @app.errorhandler(ConflictError)
    def _conflict(error):
        logger.info("Conflict: %s", error)
        return api_error(
            E.CONFLICT_DUPLICATE, f"{error.resource} conflict on {error.field}",
            details={"field": error.field},
        )

    @app.errorhandler(ModuleDisabledError)
    def _module_disabled(error):
        return api_error(
            E.MODULE_DISABLED, str(error),
            details={"module": error.module, "cycle_id": error.cycle_id},
        )

    @app.errorhandler(ForbiddenError)
    def _forbidden(error):
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(GenerationFailedError)
    def _generation_failed(error):
        return api_error(
            E.GENERATION_FAILED, "Portfolio generation failed",
            details={"assignment_id": error.assignment_id},
        )

    @app.errorhandler(PersistenceError)
    def _persistence_failed(error):
        return api_error(E.DATABASE, "A storage error occurred; the change was not saved")

    @app.errorhandler(404)
    def _http_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def _unsupported(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"limit": e.description})

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
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing, then identity ────────────────────────────────────
    init_request_timing(app)
    init_identity(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        from flask import abort
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from evidence_portfolio.models import assignment as _assignment_models  # noqa: F401
    from evidence_portfolio.models import cycle as _cycle_models            # noqa: F401
    from evidence_portfolio.models import directory as _directory_models    # noqa: F401
    from evidence_portfolio.models import portfolio as _portfolio_models    # noqa: F401
    from evidence_portfolio.models import template as _template_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from evidence_portfolio.blueprints.cycle_bp import cycle_bp
    from evidence_portfolio.blueprints.health_bp import health_bp
    from evidence_portfolio.blueprints.portfolio_bp import portfolio_bp
    from evidence_portfolio.blueprints.verification_bp import verification_bp

    app.register_blueprint(cycle_bp)
    app.register_blueprint(portfolio_bp)
    app.register_blueprint(verification_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-structure-template")
    def seed_structure_template_cmd():
        """Seed the default five-section portfolio structure template."""
        from evidence_portfolio.services.template_service import seed_default_template
        count = seed_default_template()
        db.session.commit()
        logger.info("Seeded %s new structure sections.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
