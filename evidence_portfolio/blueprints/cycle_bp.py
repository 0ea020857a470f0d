"""
Cycle Lifecycle Blueprint.

Endpoints:
  AcademicCycle:      GET/POST /cycles, GET /cycles/<id>
                      POST /cycles/<id>/transition        body {state, version?}
                      GET  /cycles/<id>/status
  ModuleGate:         GET/PUT /cycles/<id>/modules/<module>
  Assignments:        POST /cycles/<id>/assignments           body {records: [...]}
                      POST /cycles/<id>/verifier-assignments  body {records: [...]}

Domain exceptions propagate to the handlers registered in the app factory.
"""

import logging

from flask import Blueprint, jsonify, request

from evidence_portfolio.blueprints import current_actor
from evidence_portfolio.middleware.identity import require_role
from evidence_portfolio.services import assignment_service, cycle_service
from evidence_portfolio.utils.errors import E, api_error
from evidence_portfolio.utils.helpers import require_json

logger = logging.getLogger(__name__)

cycle_bp = Blueprint("cycle", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════
# AcademicCycle
# ═════════════════════════════════════════════════════════════════════════

@cycle_bp.route("/cycles", methods=["GET"])
def list_cycles():
    """List cycles, newest first, optionally filtered by state."""
    items = cycle_service.list_cycles(state=request.args.get("state"))
    return jsonify({"items": items, "total": len(items)})


@cycle_bp.route("/cycles", methods=["POST"])
@require_role("administrator")
def create_cycle():
    data, err = require_json()
    if err:
        return err
    user_id, _ = current_actor()
    return jsonify(cycle_service.create_cycle(data, actor_id=user_id)), 201


@cycle_bp.route("/cycles/<int:cycle_id>", methods=["GET"])
def get_cycle(cycle_id):
    return jsonify(cycle_service.get_cycle(cycle_id))


@cycle_bp.route("/cycles/<int:cycle_id>/transition", methods=["POST"])
@require_role("administrator")
def transition_cycle(cycle_id):
    """Move the cycle to ``state``. ``version`` enables the optimistic check."""
    data, err = require_json()
    if err:
        return err
    target = data.get("state")
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "state is required")

    version = data.get("version")
    if version is not None:
        try:
            version = int(version)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_REQUIRED, "version must be an integer", status=400)

    user_id, _ = current_actor()
    result = cycle_service.transition_cycle(
        cycle_id, target, actor_id=user_id, expected_version=version,
    )
    return jsonify(result)


@cycle_bp.route("/cycles/<int:cycle_id>/status", methods=["GET"])
@require_role("administrator")
def cycle_status(cycle_id):
    return jsonify(cycle_service.get_cycle_status(cycle_id))


# ═════════════════════════════════════════════════════════════════════════
# ModuleGate
# ═════════════════════════════════════════════════════════════════════════

@cycle_bp.route("/cycles/<int:cycle_id>/modules/<module>", methods=["GET"])
def get_module_gate(cycle_id, module):
    return jsonify(cycle_service.get_module_gate(cycle_id, module))


@cycle_bp.route("/cycles/<int:cycle_id>/modules/<module>", methods=["PUT"])
@require_role("administrator")
def set_module_gate(cycle_id, module):
    """Administrative override of one gate."""
    data, err = require_json()
    if err:
        return err
    if not isinstance(data.get("enabled"), bool):
        return api_error(E.VALIDATION_REQUIRED, "enabled (boolean) is required")

    user_id, _ = current_actor()
    result = cycle_service.set_module_gate(
        cycle_id, module, data["enabled"], actor_id=user_id, note=data.get("note"),
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Assignment registry
# ═════════════════════════════════════════════════════════════════════════

@cycle_bp.route("/cycles/<int:cycle_id>/assignments", methods=["POST"])
@require_role("administrator")
def register_assignments(cycle_id):
    data, err = require_json()
    if err:
        return err
    user_id, _ = current_actor()
    result = assignment_service.register_assignments(
        cycle_id, data.get("records"), actor_id=user_id,
    )
    return jsonify(result), 201


@cycle_bp.route("/cycles/<int:cycle_id>/verifier-assignments", methods=["POST"])
@require_role("administrator")
def register_verifier_assignments(cycle_id):
    data, err = require_json()
    if err:
        return err
    user_id, _ = current_actor()
    result = assignment_service.register_verifier_assignments(
        cycle_id, data.get("records"), actor_id=user_id,
    )
    return jsonify(result), 201
