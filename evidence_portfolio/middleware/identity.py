"""
Identity Middleware — resolves the caller from upstream gateway headers.

Authentication happens before requests reach this service. The gateway
forwards the resolved identity as:

    X-User-Id:   integer user id
    X-User-Role: administrator | instructor | verifier

This middleware copies both into ``g.current_user_id`` / ``g.current_user_role``
and answers 401 on API paths that arrive without a usable identity.

Chain order:
  timing.py  →  identity.py  →  route handler (@require_role)

Usage:
    @bp.route("/cycles", methods=["POST"])
    @require_role("administrator")
    def create_cycle():
        ...
"""

import functools
import logging

from flask import g, request

from evidence_portfolio.models.directory import USER_ROLES
from evidence_portfolio.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths served without an identity
IDENTITY_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_identity(app):
    """Register the identity resolver as a before_request hook."""

    @app.before_request
    def _resolve_identity():
        g.current_user_id = None
        g.current_user_role = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in IDENTITY_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None
        # CORS preflight carries no identity
        if request.method == "OPTIONS":
            return None

        raw_id = request.headers.get("X-User-Id", "").strip()
        role = request.headers.get("X-User-Role", "").strip().lower()

        if not raw_id.isdigit() or role not in USER_ROLES:
            logger.info(
                "Rejected request without usable identity",
                extra={"path": request.path, "request_id": getattr(g, "request_id", None)},
            )
            return api_error(E.UNAUTHENTICATED, "Missing or invalid identity headers")

        g.current_user_id = int(raw_id)
        g.current_user_role = role
        return None

    logger.info("Identity middleware installed")


def require_role(*roles: str):
    """
    Decorator: require the resolved caller to hold one of ``roles``.

    Role checks are coarse (which kind of actor may call the endpoint).
    Fine-grained scope (which portfolios, which files) is enforced in services.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            role = getattr(g, "current_user_role", None)
            if role not in roles:
                logger.warning(
                    "User %s (%s) denied on %s: requires one of %s",
                    getattr(g, "current_user_id", None), role, f.__name__, roles,
                )
                return api_error(
                    E.FORBIDDEN, "Permission denied",
                    details={"required_roles": list(roles)},
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
