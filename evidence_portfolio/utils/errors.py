"""Standardised API error responses.

Usage
-----
    from evidence_portfolio.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Portfolio not found")
    return api_error(E.VALIDATION_REQUIRED, "state is required")
    return api_error(E.MODULE_DISABLED, "Verification is disabled", details={"module": "verification"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants. Every code carries the ERR_ prefix."""

    # Validation – HTTP 400 (malformed) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_REVIEW_STATE = "ERR_INVALID_REVIEW_STATE"
    ASSIGNMENT_INVALID = "ERR_ASSIGNMENT_INVALID"
    NO_ACTIVE_TEMPLATE = "ERR_NO_ACTIVE_TEMPLATE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    CONCURRENT_MODIFICATION = "ERR_CONCURRENT_MODIFICATION"

    # Permissions – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Gating – HTTP 423
    MODULE_DISABLED = "ERR_MODULE_DISABLED"

    # Rate limit – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    GENERATION_FAILED = "ERR_GENERATION_FAILED"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.INVALID_REVIEW_STATE: 422,
    E.ASSIGNMENT_INVALID: 422,
    E.NO_ACTIVE_TEMPLATE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_TRANSITION: 409,
    E.CONCURRENT_MODIFICATION: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.MODULE_DISABLED: 423,
    E.RATE_LIMITED: 429,
    E.GENERATION_FAILED: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, module name, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
