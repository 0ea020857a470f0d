"""
Assignment Registry Service — teaching and verifier assignments per cycle.

Records arrive already parsed and validated for shape by the bulk-import
collaborator. This service resolves them against the directory, skips
exact duplicates, and reports per-record errors without failing the batch.

Transaction policy: each register_* call commits once at the end.
"""

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from evidence_portfolio.core.exceptions import NotFoundError, PersistenceError, ValidationError
from evidence_portfolio.models import db
from evidence_portfolio.models.assignment import TeachingAssignment, VerifierAssignment
from evidence_portfolio.models.cycle import MODULE_DATA_INTAKE, AcademicCycle
from evidence_portfolio.models.directory import Subject, User
from evidence_portfolio.services import cycle_service

logger = logging.getLogger(__name__)


def _default_group_label():
    return current_app.config.get("DEFAULT_GROUP_LABEL", "A")


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _commit_batch(cycle_id, what):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to register %s", what, extra={"cycle_id": cycle_id})
        raise PersistenceError(f"registering {what}") from exc


def register_assignments(cycle_id, records: list[dict], actor_id) -> dict:
    """
    Register teaching assignments for a cycle.

    Each record: {"instructor_id", "subject_id", "group_label"?}.
    Requires the ``data_intake`` gate.

    Returns:
        {"cycle_id", "created": [assignment dicts], "skipped_count",
         "errors": [{"index", "reason"}]}
    """
    if not isinstance(records, list):
        raise ValidationError("records must be a list")
    cycle_service.require_module_enabled(cycle_id, MODULE_DATA_INTAKE)

    default_group = _default_group_label()
    created, errors = [], []
    skipped = 0
    seen = set()

    for index, record in enumerate(records):
        record = record or {}
        instructor_id = _as_int(record.get("instructor_id"))
        subject_id = _as_int(record.get("subject_id"))
        group_label = str(record.get("group_label") or default_group).strip()

        instructor = db.session.get(User, instructor_id) if instructor_id else None
        if instructor is None or not instructor.is_active:
            errors.append({"index": index, "reason": "instructor not found"})
            continue
        subject = db.session.get(Subject, subject_id) if subject_id else None
        if subject is None or not subject.is_active:
            errors.append({"index": index, "reason": "subject not found"})
            continue

        key = (instructor_id, subject_id, group_label)
        existing = TeachingAssignment.query.filter_by(
            instructor_id=instructor_id, subject_id=subject_id,
            cycle_id=cycle_id, group_label=group_label,
        ).first()
        if existing is not None or key in seen:
            skipped += 1
            continue
        seen.add(key)

        assignment = TeachingAssignment(
            instructor_id=instructor_id,
            subject_id=subject_id,
            cycle_id=cycle_id,
            group_label=group_label,
            is_active=True,
        )
        db.session.add(assignment)
        created.append(assignment)

    _commit_batch(cycle_id, "teaching assignments")

    logger.info(
        "Registered %d assignments (%d skipped, %d errors)",
        len(created), skipped, len(errors),
        extra={"cycle_id": cycle_id, "user_id": actor_id},
    )
    return {
        "cycle_id": cycle_id,
        "created": [a.to_dict() for a in created],
        "skipped_count": skipped,
        "errors": errors,
    }


def register_verifier_assignments(cycle_id, records: list[dict], actor_id) -> dict:
    """
    Register verifier → instructor coverage for a cycle.

    Each record: {"verifier_id", "instructor_id"}. The verifier must hold the
    verifier role. Re-registering an inactive pair re-activates it.
    """
    if not isinstance(records, list):
        raise ValidationError("records must be a list")
    if db.session.get(AcademicCycle, cycle_id) is None:
        raise NotFoundError(resource="AcademicCycle", resource_id=cycle_id)

    created, errors = [], []
    skipped = 0

    for index, record in enumerate(records):
        record = record or {}
        verifier = db.session.get(User, _as_int(record.get("verifier_id")) or 0)
        if verifier is None or verifier.role != "verifier":
            errors.append({"index": index, "reason": "verifier not found"})
            continue
        instructor = db.session.get(User, _as_int(record.get("instructor_id")) or 0)
        if instructor is None:
            errors.append({"index": index, "reason": "instructor not found"})
            continue

        existing = VerifierAssignment.query.filter_by(
            verifier_id=verifier.id, instructor_id=instructor.id, cycle_id=cycle_id,
        ).first()
        if existing is not None:
            if existing.is_active:
                skipped += 1
                continue
            existing.is_active = True
            created.append(existing)
            continue

        va = VerifierAssignment(
            verifier_id=verifier.id, instructor_id=instructor.id,
            cycle_id=cycle_id, is_active=True,
        )
        db.session.add(va)
        # Later records in the same batch must see this row
        db.session.flush()
        created.append(va)

    _commit_batch(cycle_id, "verifier assignments")

    logger.info(
        "Registered %d verifier assignments (%d skipped, %d errors)",
        len(created), skipped, len(errors),
        extra={"cycle_id": cycle_id, "user_id": actor_id},
    )
    return {
        "cycle_id": cycle_id,
        "created": [v.to_dict() for v in created],
        "skipped_count": skipped,
        "errors": errors,
    }
