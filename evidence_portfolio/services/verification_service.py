"""
Verification Workflow Service — file reviews and progress propagation.

A review is two steps with separate durability:

    1. write review_state / reviewer / timestamp / comment  → commit
    2. recompute the owning root's completion_pct           → commit

If step 2 fails the review stays committed and the result reports
``outcome="partial_success"`` with ``progress_stale=True``. Callers must not
retry the review; a later recompute (any review on the same root, or
POST /portfolios/<id>/recompute) converges the value.

Authorization: the reviewer needs an active VerifierAssignment covering the
file's instructor in the file's cycle (ForbiddenError otherwise), and the
cycle's ``verification`` gate must be enabled.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from evidence_portfolio.core.exceptions import (
    ForbiddenError,
    InvalidReviewStateError,
    ModuleDisabledError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from evidence_portfolio.models import db
from evidence_portfolio.models.assignment import VerifierAssignment
from evidence_portfolio.models.cycle import MODULE_VERIFICATION
from evidence_portfolio.models.portfolio import (
    REVIEWABLE_STATES,
    PortfolioNode,
    UploadedFile,
)
from evidence_portfolio.services import access_scope, cycle_service, portfolio_service

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial_success"

BATCH_ITEM_SHAPE_ERROR = "Each item must be an object with id and state"


def _apply_review(file_id, new_state, reviewer_id, comment):
    """Validate, authorize and commit one review. Returns (file, root_id)."""
    if not isinstance(new_state, str) or new_state not in REVIEWABLE_STATES:
        raise InvalidReviewStateError(new_state)

    record = db.session.get(UploadedFile, file_id)
    if record is None:
        raise NotFoundError(resource="UploadedFile", resource_id=file_id)

    root = portfolio_service.find_root(db.session.get(PortfolioNode, record.node_id))
    if not access_scope.verifier_covers(reviewer_id, root.instructor_id, root.cycle_id):
        logger.warning(
            "Reviewer %s not assigned to instructor %s", reviewer_id, root.instructor_id,
            extra={"file_id": file_id, "cycle_id": root.cycle_id, "user_id": reviewer_id},
        )
        raise ForbiddenError("Reviewer is not assigned to this portfolio")

    cycle_service.require_module_enabled(root.cycle_id, MODULE_VERIFICATION)

    record.review_state = new_state
    record.reviewer_id = reviewer_id
    record.reviewed_at = datetime.now(timezone.utc)
    if comment is not None:
        record.comment = comment
    root_id = root.id
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Review write failed", extra={"file_id": file_id})
        raise PersistenceError("file review", "UploadedFile") from exc

    logger.info(
        "File %s reviewed: %s", file_id, new_state,
        extra={"file_id": file_id, "root_id": root_id, "user_id": reviewer_id,
               "event_type": "file_review"},
    )
    return record, root_id


def _refresh_progress(root_id):
    """Return (completion_pct, stale)."""
    try:
        return portfolio_service.recompute_progress(root_id), False
    except (PersistenceError, SQLAlchemyError):
        db.session.rollback()
        logger.warning(
            "Progress recompute failed after review; value is stale",
            extra={"root_id": root_id}, exc_info=True,
        )
        root = db.session.get(PortfolioNode, root_id)
        return int(root.completion_pct or 0), True


def review_file(file_id, new_state, reviewer_id, comment=None) -> dict:
    """
    Review one file and refresh its portfolio's progress.

    Returns:
        {"id", "state", "reviewed_at", "root_id", "completion_pct",
         "outcome", "progress_stale"}

    Raises:
        InvalidReviewStateError, NotFoundError, ForbiddenError, ModuleDisabledError,
        PersistenceError
    """
    record, root_id = _apply_review(file_id, new_state, reviewer_id, comment)
    pct, stale = _refresh_progress(root_id)

    return {
        "id": record.id,
        "state": record.review_state,
        "reviewed_at": record.reviewed_at.isoformat() if record.reviewed_at else None,
        "root_id": root_id,
        "completion_pct": pct,
        "outcome": OUTCOME_PARTIAL if stale else OUTCOME_SUCCESS,
        "progress_stale": stale,
    }


def review_batch(items: list[dict], reviewer_id) -> list[dict]:
    """
    Review many files. Partial success allowed.

    Each item commits on its own; every distinct affected root is
    recomputed exactly once after the loop.

    Returns:
        [{"id", "success", "state"?, "error"?, "progress_stale"?}] in input order
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    results = []
    root_by_file = {}
    for item in items:
        if not isinstance(item, dict):
            results.append({"id": None, "success": False, "error": BATCH_ITEM_SHAPE_ERROR})
            continue
        file_id = item.get("id")
        try:
            if isinstance(file_id, bool) or not isinstance(file_id, int):
                raise ValidationError("File id must be an integer", details={"id": file_id})
            record, root_id = _apply_review(
                file_id, item.get("state"), reviewer_id, item.get("comment"),
            )
        except (
            ValidationError, NotFoundError, ForbiddenError,
            ModuleDisabledError, PersistenceError,
        ) as exc:
            results.append({"id": file_id, "success": False, "error": str(exc)})
            continue
        root_by_file[record.id] = root_id
        results.append({"id": record.id, "success": True, "state": record.review_state})

    stale_roots = set()
    for root_id in sorted(set(root_by_file.values())):
        _, stale = _refresh_progress(root_id)
        if stale:
            stale_roots.add(root_id)

    for result in results:
        if result["success"]:
            result["progress_stale"] = root_by_file[result["id"]] in stale_roots

    logger.info(
        "Batch review: %d ok, %d failed, %d roots recomputed",
        len(root_by_file), len(results) - len(root_by_file), len(set(root_by_file.values())),
        extra={"user_id": reviewer_id, "event_type": "file_review_batch"},
    )
    return results


def get_verifier_stats(verifier_id, cycle_id=None) -> dict:
    """
    Workload summary for one verifier.

    Returns:
        {"verifier_id", "cycle_id", "assigned_instructors", "portfolios_in_scope",
         "reviewed": {state: count}, "reviewed_total", "pending_in_scope"}
    """
    va_q = VerifierAssignment.query.filter_by(verifier_id=verifier_id, is_active=True)
    if cycle_id is not None:
        va_q = va_q.filter_by(cycle_id=cycle_id)
    assigned = va_q.with_entities(VerifierAssignment.instructor_id).distinct().count()

    roots_q = access_scope.authorized_roots_query("verifier", verifier_id)
    if cycle_id is not None:
        roots_q = roots_q.filter(PortfolioNode.cycle_id == cycle_id)

    reviewed = dict.fromkeys(sorted(REVIEWABLE_STATES), 0)
    reviewed_q = (
        db.session.query(UploadedFile.review_state, func.count(UploadedFile.id))
        .join(PortfolioNode, PortfolioNode.id == UploadedFile.node_id)
        .filter(UploadedFile.reviewer_id == verifier_id)
    )
    if cycle_id is not None:
        reviewed_q = reviewed_q.filter(PortfolioNode.cycle_id == cycle_id)
    for state, count in reviewed_q.group_by(UploadedFile.review_state).all():
        if state in reviewed:
            reviewed[state] = count

    pending_q = (
        db.session.query(func.count(UploadedFile.id))
        .join(PortfolioNode, PortfolioNode.id == UploadedFile.node_id)
        .filter(UploadedFile.review_state == "pending")
        .filter(access_scope.verifier_coverage_clause(verifier_id))
    )
    if cycle_id is not None:
        pending_q = pending_q.filter(PortfolioNode.cycle_id == cycle_id)

    return {
        "verifier_id": verifier_id,
        "cycle_id": cycle_id,
        "assigned_instructors": assigned,
        "portfolios_in_scope": roots_q.count(),
        "reviewed": reviewed,
        "reviewed_total": sum(reviewed.values()),
        "pending_in_scope": pending_q.scalar() or 0,
    }
