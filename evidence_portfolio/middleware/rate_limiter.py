"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in evidence_portfolio/__init__.py with no
default limits; this module applies granular limits per route category and
keys them by the resolved caller where one exists.

Usage:
    from evidence_portfolio.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

# Portfolio generation and batch review fan out into many writes
BULK_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """Rate limit key: resolved user id if available, else remote IP."""
    user_id = getattr(g, "current_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per caller):
        - Cycle administration:   60/minute
        - Portfolio reads:        200/minute
        - Verification writes:    60/minute
        - Generation / batch:     BULK_LIMIT, shared, applied in the blueprints
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("cycle", "verification"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("portfolio")
    if bp:
        limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — bulk: %s, write: %s, read: %s",
        BULK_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
