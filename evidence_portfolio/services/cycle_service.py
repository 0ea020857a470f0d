"""
Cycle Lifecycle Service — academic cycle state machine and module gates.

Manages cycle transitions with:
  - Transition validation (CYCLE_TRANSITIONS)
  - Optimistic concurrency (mapper version counter + optional expected_version)
  - Single active cycle rule
  - Gate side effects (STATE_GATE_EFFECTS) written in the same commit

Gates are read from the database on every call; nothing is cached between
requests, so a transition is visible to the very next gate check.

Transaction policy: mutating functions commit (or roll back) themselves.
Blueprints never touch db.session.

Usage:
    from evidence_portfolio.services import cycle_service

    cycle_service.transition_cycle(cycle_id, "active", actor_id=1)
    cycle_service.require_module_enabled(cycle_id, "data_intake")
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from evidence_portfolio.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    InvalidTransitionError,
    ModuleDisabledError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from evidence_portfolio.models import db
from evidence_portfolio.models.assignment import TeachingAssignment
from evidence_portfolio.models.cycle import (
    CYCLE_STATES,
    CYCLE_TRANSITIONS,
    MODULES,
    STATE_GATE_EFFECTS,
    AcademicCycle,
    ModuleGate,
    validate_cycle_transition,
)
from evidence_portfolio.models.portfolio import PortfolioNode
from evidence_portfolio.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

GATE_NOT_ENABLED_REASON = "not enabled for this cycle"

# Gates may not be switched on once a cycle is winding down
_FROZEN_STATES = frozenset({"closing", "archived"})


def _utcnow():
    return datetime.now(timezone.utc)


def _get_cycle_or_raise(cycle_id) -> AcademicCycle:
    cycle = db.session.get(AcademicCycle, cycle_id)
    if cycle is None:
        raise NotFoundError(resource="AcademicCycle", resource_id=cycle_id)
    return cycle


def _check_module(module):
    if module not in MODULES:
        raise ValidationError(
            f"Unknown module: {module!r}",
            details={"module": f"must be one of {', '.join(sorted(MODULES))}"},
        )


# ═══════════════════════════════════════════════════════════════════
# CYCLE CRUD
# ═══════════════════════════════════════════════════════════════════

def create_cycle(data: dict, actor_id) -> dict:
    """Create a cycle in state ``preparing``.

    Required: name, start_date, end_date, period_label. Optional: description, year.
    """
    errors = {}
    name = (data.get("name") or "").strip()
    period_label = (data.get("period_label") or "").strip()
    if not name:
        errors["name"] = "required"
    if not period_label:
        errors["period_label"] = "required"

    start_date = end_date = None
    try:
        start_date = parse_date_input(data.get("start_date"))
    except ValueError as exc:
        errors["start_date"] = str(exc)
    try:
        end_date = parse_date_input(data.get("end_date"))
    except ValueError as exc:
        errors["end_date"] = str(exc)
    if start_date is None and "start_date" not in errors:
        errors["start_date"] = "required"
    if end_date is None and "end_date" not in errors:
        errors["end_date"] = "required"
    if start_date and end_date and end_date < start_date:
        errors["end_date"] = "must not be before start_date"

    year = data.get("year")
    if year is not None:
        try:
            year = int(year)
        except (TypeError, ValueError):
            errors["year"] = "must be an integer"

    if errors:
        raise ValidationError("Invalid cycle data", details=errors)

    if AcademicCycle.query.filter_by(name=name).first():
        raise ConflictError("AcademicCycle", "name", name)

    cycle = AcademicCycle(
        name=name,
        description=data.get("description") or "",
        start_date=start_date,
        end_date=end_date,
        period_label=period_label,
        year=year or start_date.year,
        state="preparing",
        created_by=actor_id,
    )
    db.session.add(cycle)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("AcademicCycle", "name", name) from exc

    logger.info(
        "Cycle created: %s", cycle.name,
        extra={"cycle_id": cycle.id, "user_id": actor_id},
    )
    return cycle.to_dict()


def list_cycles(state: str | None = None) -> list[dict]:
    q = AcademicCycle.query
    if state:
        if state not in CYCLE_STATES:
            raise ValidationError(f"Unknown cycle state: {state!r}")
        q = q.filter_by(state=state)
    return [c.to_dict() for c in q.order_by(AcademicCycle.start_date.desc()).all()]


def get_cycle(cycle_id) -> dict:
    return _get_cycle_or_raise(cycle_id).to_dict()


# ═══════════════════════════════════════════════════════════════════
# MODULE GATES
# ═══════════════════════════════════════════════════════════════════

def upsert_gate(cycle_id, module, enabled, actor_id, *, now=None, note=None) -> ModuleGate:
    """Insert or update one gate row. Flushes nothing; caller commits."""
    now = now or _utcnow()
    gate = ModuleGate.query.filter_by(cycle_id=cycle_id, module=module).first()
    if gate is None:
        gate = ModuleGate(cycle_id=cycle_id, module=module, enabled=False)
        db.session.add(gate)

    if enabled and not gate.enabled:
        gate.enabled_at = now
    elif not enabled and gate.enabled:
        gate.disabled_at = now
    gate.enabled = bool(enabled)
    gate.updated_by = actor_id
    gate.updated_at = now
    if note is not None:
        gate.note = note
    return gate


def _apply_state_gates(cycle: AcademicCycle, state: str, actor_id, now):
    effects = STATE_GATE_EFFECTS.get(state)
    if not effects:
        return
    if effects.get("disable_all"):
        for module in sorted(MODULES):
            upsert_gate(cycle.id, module, False, actor_id, now=now)
        return
    for module in effects.get("disable", []):
        upsert_gate(cycle.id, module, False, actor_id, now=now)
    for module in effects.get("enable", []):
        upsert_gate(cycle.id, module, True, actor_id, now=now)


def get_module_gate(cycle_id, module) -> dict:
    """
    Read one gate. Default-deny: a missing row reads as disabled.

    Returns:
        {"cycle_id", "module", "enabled", "reason", "enabled_at",
         "disabled_at", "note", "updated_by"}
    """
    _check_module(module)
    _get_cycle_or_raise(cycle_id)

    gate = ModuleGate.query.filter_by(cycle_id=cycle_id, module=module).first()
    if gate is None:
        return {
            "cycle_id": cycle_id,
            "module": module,
            "enabled": False,
            "reason": GATE_NOT_ENABLED_REASON,
            "enabled_at": None,
            "disabled_at": None,
            "note": None,
            "updated_by": None,
        }

    result = gate.to_dict()
    result.pop("id", None)
    result.pop("updated_at", None)
    result["reason"] = None if gate.enabled else (gate.note or GATE_NOT_ENABLED_REASON)
    return result


def require_module_enabled(cycle_id, module):
    """Raise ModuleDisabledError unless the gate is enabled for the cycle."""
    gate = get_module_gate(cycle_id, module)
    if not gate["enabled"]:
        raise ModuleDisabledError(module, cycle_id)
    return gate


def set_module_gate(cycle_id, module, enabled, actor_id, note=None) -> dict:
    """Administrative override of a single gate."""
    _check_module(module)
    cycle = _get_cycle_or_raise(cycle_id)
    if enabled and cycle.state in _FROZEN_STATES:
        raise ValidationError(
            f"Cannot enable {module} while cycle is {cycle.state}",
            details={"state": cycle.state},
        )

    upsert_gate(cycle.id, module, enabled, actor_id, note=note)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Gate override failed", extra={"cycle_id": cycle_id})
        raise PersistenceError("gate override", "ModuleGate") from exc

    logger.info(
        "Gate %s set to %s", module, bool(enabled),
        extra={"cycle_id": cycle_id, "user_id": actor_id, "event_type": "gate_override"},
    )
    return get_module_gate(cycle_id, module)


def _gate_map(cycle_id) -> dict:
    rows = {g.module: g.enabled for g in ModuleGate.query.filter_by(cycle_id=cycle_id).all()}
    return {module: bool(rows.get(module, False)) for module in sorted(MODULES)}


# ═══════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═══════════════════════════════════════════════════════════════════

def transition_cycle(cycle_id, target_state, actor_id, *, expected_version=None) -> dict:
    """
    Move a cycle to ``target_state`` and apply the gate side effects.

    Args:
        cycle_id: AcademicCycle PK.
        target_state: Desired lifecycle state.
        actor_id: Who is performing the transition.
        expected_version: Optional version the caller last read.

    Returns:
        cycle.to_dict() plus "previous_state" and "gates" (module → enabled).

    Raises:
        NotFoundError, InvalidTransitionError, ConflictError,
        ConcurrentModificationError, PersistenceError
    """
    cycle = _get_cycle_or_raise(cycle_id)

    if expected_version is not None and int(expected_version) != cycle.version:
        raise ConcurrentModificationError("AcademicCycle", cycle_id)

    previous_state = cycle.state
    if not validate_cycle_transition(previous_state, target_state):
        raise InvalidTransitionError("AcademicCycle", previous_state, target_state)

    if target_state == "active":
        other = AcademicCycle.query.filter(
            AcademicCycle.state == "active", AcademicCycle.id != cycle.id,
        ).first()
        if other is not None:
            raise ConflictError("AcademicCycle", "state", "active")

    now = _utcnow()
    try:
        cycle.state = target_state
        if target_state == "closing":
            cycle.closed_at = now
            cycle.closed_by = actor_id
        _apply_state_gates(cycle, target_state, actor_id, now)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning(
            "Concurrent cycle modification detected",
            extra={"cycle_id": cycle_id, "user_id": actor_id},
        )
        raise ConcurrentModificationError("AcademicCycle", cycle_id) from exc
    except IntegrityError as exc:
        # Lost the race for the single active slot
        db.session.rollback()
        raise ConflictError("AcademicCycle", "state", target_state) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Cycle transition failed", extra={"cycle_id": cycle_id})
        raise PersistenceError("cycle transition", "AcademicCycle") from exc

    logger.info(
        "Cycle %s: %s → %s", cycle.name, previous_state, target_state,
        extra={"cycle_id": cycle.id, "user_id": actor_id, "event_type": "cycle_transition"},
    )

    result = cycle.to_dict()
    result["previous_state"] = previous_state
    result["gates"] = _gate_map(cycle.id)
    return result


def get_available_transitions(cycle: AcademicCycle) -> list[str]:
    return list(CYCLE_TRANSITIONS.get(cycle.state, []))


def get_cycle_status(cycle_id) -> dict:
    """
    Summary for the administrator dashboard.

    Returns:
        {"cycle", "modules", "enabled_modules", "total_modules",
         "module_progress", "available_transitions",
         "assignment_count", "portfolio_count"}
    """
    cycle = _get_cycle_or_raise(cycle_id)
    modules = _gate_map(cycle.id)
    enabled = sum(1 for v in modules.values() if v)

    assignment_count = TeachingAssignment.query.filter_by(
        cycle_id=cycle.id, is_active=True,
    ).count()
    portfolio_count = PortfolioNode.query.filter(
        PortfolioNode.cycle_id == cycle.id,
        PortfolioNode.parent_id.is_(None),
    ).count()

    return {
        "cycle": cycle.to_dict(),
        "modules": modules,
        "enabled_modules": enabled,
        "total_modules": len(modules),
        "module_progress": round(enabled * 100 / len(modules)) if modules else 0,
        "available_transitions": get_available_transitions(cycle),
        "assignment_count": assignment_count,
        "portfolio_count": portfolio_count,
    }
