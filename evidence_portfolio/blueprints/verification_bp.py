"""
Verification Blueprint.

Endpoints:
  POST /files/<id>/review      body {state, comment?}
  POST /files/review-batch     body {items: [{id, state, comment?}]}
  GET  /verifiers/me/stats     ?cycle_id=
"""

import logging

from flask import Blueprint, jsonify

from evidence_portfolio import limiter
from evidence_portfolio.blueprints import current_actor
from evidence_portfolio.middleware.identity import require_role
from evidence_portfolio.middleware.rate_limiter import BULK_LIMIT, rate_limit_key
from evidence_portfolio.services import verification_service
from evidence_portfolio.utils.errors import E, api_error
from evidence_portfolio.utils.helpers import parse_int_arg, require_json

logger = logging.getLogger(__name__)

verification_bp = Blueprint("verification", __name__, url_prefix="/api/v1")

_bulk_limit = limiter.shared_limit(BULK_LIMIT, scope="bulk_write", key_func=rate_limit_key)


@verification_bp.route("/files/<int:file_id>/review", methods=["POST"])
@require_role("verifier", "administrator")
def review_file(file_id):
    data, err = require_json()
    if err:
        return err
    if not data.get("state"):
        return api_error(E.VALIDATION_REQUIRED, "state is required")

    user_id, _ = current_actor()
    result = verification_service.review_file(
        file_id, data["state"], reviewer_id=user_id, comment=data.get("comment"),
    )
    return jsonify(result)


@verification_bp.route("/files/review-batch", methods=["POST"])
@require_role("verifier", "administrator")
@_bulk_limit
def review_batch():
    """Review many files; one bad item never blocks the rest."""
    data, err = require_json()
    if err:
        return err
    items = data.get("items")
    if not isinstance(items, list) or not items:
        return api_error(E.VALIDATION_REQUIRED, "items (non-empty list) is required")

    user_id, _ = current_actor()
    results = verification_service.review_batch(items, reviewer_id=user_id)
    succeeded = sum(1 for r in results if r["success"])
    return jsonify({
        "results": results,
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    })


@verification_bp.route("/verifiers/me/stats", methods=["GET"])
@require_role("verifier")
def my_stats():
    try:
        cycle_id = parse_int_arg("cycle_id")
    except ValueError as exc:
        return api_error(E.VALIDATION_REQUIRED, str(exc))
    user_id, _ = current_actor()
    return jsonify(verification_service.get_verifier_stats(user_id, cycle_id=cycle_id))
