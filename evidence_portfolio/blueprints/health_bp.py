"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database round-trip and template presence
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from evidence_portfolio.models import db
from evidence_portfolio.models.template import StructureSection

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness check; always 200 while the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Structure template ───────────────────────────────────────────
    if overall:
        sections = StructureSection.query.filter_by(is_active=True, parent_id=None).count()
        checks["structure_template"] = {
            "status": "ok" if sections else "empty",
            "sections": sections,
        }

    checks["app"] = {
        "name": "Academic Evidence Portfolio Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
