"""
Portfolio Blueprint — generation, scoped trees, progress, evidence files.

Endpoints:
  Generation:   POST /cycles/<id>/portfolios/generate
                POST /assignments/<id>/portfolio
  Trees:        GET  /portfolios                  (scoped to the caller's role)
                GET  /portfolios/<root_id>
  Listing:      GET  /portfolios/summary?cycle_id=&state=&instructor_id=
  Progress:     POST /portfolios/<root_id>/recompute
  Files:        POST /nodes/<node_id>/files
"""

import logging

from flask import Blueprint, jsonify, request

from evidence_portfolio import limiter
from evidence_portfolio.blueprints import current_actor
from evidence_portfolio.middleware.identity import require_role
from evidence_portfolio.middleware.rate_limiter import BULK_LIMIT, rate_limit_key
from evidence_portfolio.services import portfolio_service
from evidence_portfolio.utils.errors import E, api_error
from evidence_portfolio.utils.helpers import parse_int_arg, require_json

logger = logging.getLogger(__name__)

portfolio_bp = Blueprint("portfolio", __name__, url_prefix="/api/v1")

_bulk_limit = limiter.shared_limit(BULK_LIMIT, scope="bulk_write", key_func=rate_limit_key)


# ═════════════════════════════════════════════════════════════════════════
# Generation
# ═════════════════════════════════════════════════════════════════════════

@portfolio_bp.route("/cycles/<int:cycle_id>/portfolios/generate", methods=["POST"])
@require_role("administrator")
@_bulk_limit
def generate_cycle_portfolios(cycle_id):
    """Generate a portfolio for every active assignment of the cycle."""
    user_id, _ = current_actor()
    return jsonify(portfolio_service.generate_portfolios(cycle_id, actor_id=user_id))


@portfolio_bp.route("/assignments/<int:assignment_id>/portfolio", methods=["POST"])
@require_role("administrator")
def generate_assignment_portfolio(assignment_id):
    user_id, _ = current_actor()
    result = portfolio_service.generate_for_assignment(assignment_id, actor_id=user_id)
    return jsonify(result), 201 if result["created"] else 200


# ═════════════════════════════════════════════════════════════════════════
# Trees & listing
# ═════════════════════════════════════════════════════════════════════════

@portfolio_bp.route("/portfolios", methods=["GET"])
def list_portfolio_trees():
    user_id, role = current_actor()
    items = portfolio_service.get_tree_for_role(role, user_id)
    return jsonify({"items": items, "total": len(items)})


@portfolio_bp.route("/portfolios/summary", methods=["GET"])
@require_role("administrator")
def portfolio_summary():
    """Administrative listing with counts by state."""
    try:
        cycle_id = parse_int_arg("cycle_id")
        instructor_id = parse_int_arg("instructor_id")
    except ValueError as exc:
        return api_error(E.VALIDATION_REQUIRED, str(exc))
    return jsonify(portfolio_service.list_portfolios(
        cycle_id=cycle_id,
        state=request.args.get("state") or None,
        instructor_id=instructor_id,
    ))


@portfolio_bp.route("/portfolios/<int:root_id>", methods=["GET"])
def get_portfolio_tree(root_id):
    user_id, role = current_actor()
    return jsonify(portfolio_service.get_tree_for_role(role, user_id, root_id=root_id))


@portfolio_bp.route("/portfolios/<int:root_id>/recompute", methods=["POST"])
@require_role("administrator")
def recompute_portfolio(root_id):
    pct = portfolio_service.recompute_progress(root_id)
    return jsonify({"root_id": root_id, "completion_pct": pct})


# ═════════════════════════════════════════════════════════════════════════
# Evidence files
# ═════════════════════════════════════════════════════════════════════════

@portfolio_bp.route("/nodes/<int:node_id>/files", methods=["POST"])
@require_role("instructor", "administrator")
def register_file(node_id):
    """Attach an already-stored blob to a leaf folder."""
    data, err = require_json()
    if err:
        return err
    user_id, role = current_actor()
    result = portfolio_service.register_uploaded_file(node_id, data, user_id, role)
    return jsonify(result), 201
