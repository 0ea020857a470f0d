"""
Portfolio Hierarchy Engine — tree generation, scoped retrieval, progress roll-up.

Generation:
  - One root per (instructor, subject, cycle, group); repeat calls are no-ops
  - Root + every template section written in ONE unit of work (all-or-nothing)
  - A concurrent generator that loses the race on the partial unique index
    gets the winner's root back as ``created=False``

Retrieval:
  - Scope from access_scope; a root outside scope reads as NotFoundError
  - Per-node ``stats`` are computed from files on that exact node, display only

Progress:
  - recompute_progress walks the subtree breadth-first over parent pointers and
    persists round(100 * approved / total) on the root (0 when there are no files)
  - Idempotent, so concurrent recomputations converge on the same value

Transaction policy: mutating functions commit (or roll back) themselves.
"""

import logging
import math
from datetime import datetime, timezone

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from evidence_portfolio.core.exceptions import (
    AlreadyExistsError,
    AssignmentInvalidError,
    ForbiddenError,
    GenerationFailedError,
    ModuleDisabledError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from evidence_portfolio.models import db
from evidence_portfolio.models.assignment import TeachingAssignment
from evidence_portfolio.models.cycle import (
    MODULE_DATA_INTAKE,
    MODULE_DOCUMENT_MANAGEMENT,
    MODULE_PORTFOLIO_GENERATION,
    MODULE_VERIFICATION,
    AcademicCycle,
    ModuleGate,
)
from evidence_portfolio.models.directory import Subject, User
from evidence_portfolio.models.portfolio import (
    NODE_STATES,
    REVIEW_STATES,
    PortfolioNode,
    UploadedFile,
)
from evidence_portfolio.services import access_scope, cycle_service, template_service

logger = logging.getLogger(__name__)

ROOT_NAME_FORMAT = "{subject} - Group {group}"

# Modules opened for a cycle once its first portfolio exists
_POST_GENERATION_MODULES = (MODULE_DOCUMENT_MANAGEMENT, MODULE_VERIFICATION)


def _utcnow():
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ═══════════════════════════════════════════════════════════════════
# TREE HELPERS
# ═══════════════════════════════════════════════════════════════════

def collect_subtree(root_id) -> list[PortfolioNode]:
    """Breadth-first closure over parent pointers, root first."""
    root = db.session.get(PortfolioNode, root_id)
    if root is None:
        return []
    nodes = [root]
    frontier = [root.id]
    while frontier:
        children = (
            PortfolioNode.query
            .filter(PortfolioNode.parent_id.in_(frontier))
            .order_by(PortfolioNode.id)
            .all()
        )
        nodes.extend(children)
        frontier = [c.id for c in children]
    return nodes


def find_root(node: PortfolioNode) -> PortfolioNode:
    """Follow parent pointers up to the level-0 node."""
    current = node
    while current.parent_id is not None:
        current = db.session.get(PortfolioNode, current.parent_id)
    return current


def node_file_stats(node_ids) -> dict:
    """
    File counts per node, for display.

    Returns:
        {node_id: {"total", "pending", "approved", "rejected", "under_review"}}
        Every requested id is present, zero-filled.
    """
    node_ids = list(node_ids)
    stats = {nid: dict.fromkeys(("total",) + REVIEW_STATES, 0) for nid in node_ids}
    if not node_ids:
        return stats

    rows = (
        db.session.query(UploadedFile.node_id, UploadedFile.review_state, func.count(UploadedFile.id))
        .filter(UploadedFile.node_id.in_(node_ids))
        .group_by(UploadedFile.node_id, UploadedFile.review_state)
        .all()
    )
    for node_id, state, count in rows:
        entry = stats[node_id]
        entry[state] = count
        entry["total"] += count
    return stats


def _nest(nodes: list[PortfolioNode], stats: dict) -> dict:
    by_parent: dict[int | None, list[PortfolioNode]] = {}
    for node in nodes:
        by_parent.setdefault(node.parent_id, []).append(node)

    def _build(node):
        data = node.to_dict()
        data["stats"] = stats[node.id]
        data["children"] = [_build(c) for c in by_parent.get(node.id, [])]
        return data

    return _build(nodes[0])


def _tree_for_root(root: PortfolioNode) -> dict:
    nodes = collect_subtree(root.id)
    stats = node_file_stats(n.id for n in nodes)
    return _nest(nodes, stats)


# ═══════════════════════════════════════════════════════════════════
# GENERATION
# ═══════════════════════════════════════════════════════════════════

def _resolve_assignment(assignment) -> TeachingAssignment:
    if isinstance(assignment, TeachingAssignment):
        return assignment
    obj = db.session.get(TeachingAssignment, assignment)
    if obj is None:
        raise NotFoundError(resource="TeachingAssignment", resource_id=assignment)
    return obj


def _validate_assignment(assignment: TeachingAssignment):
    """Return (instructor, subject) or raise AssignmentInvalidError."""
    if not assignment.is_active:
        raise AssignmentInvalidError(assignment.id, "assignment is inactive")
    instructor = db.session.get(User, assignment.instructor_id)
    if instructor is None or not instructor.is_active:
        raise AssignmentInvalidError(assignment.id, "instructor not resolvable")
    subject = db.session.get(Subject, assignment.subject_id)
    if subject is None or not subject.is_active:
        raise AssignmentInvalidError(assignment.id, "subject not resolvable")
    return instructor, subject


def _require_generation_allowed(cycle_id):
    """data_intake must be on; an explicit portfolio_generation row may veto."""
    cycle_service.require_module_enabled(cycle_id, MODULE_DATA_INTAKE)
    veto = ModuleGate.query.filter_by(
        cycle_id=cycle_id, module=MODULE_PORTFOLIO_GENERATION,
    ).first()
    if veto is not None and not veto.enabled:
        raise ModuleDisabledError(MODULE_PORTFOLIO_GENERATION, cycle_id)


def _find_existing_root(identity: tuple) -> PortfolioNode | None:
    instructor_id, subject_id, cycle_id, group_label = identity
    return PortfolioNode.query.filter(
        PortfolioNode.parent_id.is_(None),
        PortfolioNode.instructor_id == instructor_id,
        PortfolioNode.subject_id == subject_id,
        PortfolioNode.cycle_id == cycle_id,
        PortfolioNode.group_label == group_label,
    ).first()


def _build_node(assignment, parent, *, name, level, section_id, actor_id) -> PortfolioNode:
    node = PortfolioNode(
        instructor_id=assignment.instructor_id,
        subject_id=assignment.subject_id,
        assignment_id=assignment.id,
        cycle_id=assignment.cycle_id,
        group_label=assignment.group_label,
        parent_id=parent.id if parent is not None else None,
        section_id=section_id,
        level=level,
        name=name,
        path=f"{parent.path}/{name}" if parent is not None else name,
        state="active",
        completion_pct=0 if parent is None else None,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.session.add(node)
    # Children need the generated id
    db.session.flush()
    return node


def _materialize_sections(assignment, parent, sections, actor_id) -> int:
    count = 0
    for section in sections:
        node = _build_node(
            assignment, parent,
            name=section["name"],
            level=section["level"],
            section_id=section["id"],
            actor_id=actor_id,
        )
        count += 1
        count += _materialize_sections(assignment, node, section["children"], actor_id)
    return count


def _insert_tree(assignment, subject, template, actor_id) -> tuple[PortfolioNode, int]:
    """Write root + sections + gate updates and commit. Raises AlreadyExistsError on a lost race."""
    try:
        root = _build_node(
            assignment, None,
            name=ROOT_NAME_FORMAT.format(subject=subject.name, group=assignment.group_label),
            level=0, section_id=None, actor_id=actor_id,
        )
        node_count = 1 + _materialize_sections(assignment, root, template, actor_id)

        now = _utcnow()
        for module in _POST_GENERATION_MODULES:
            cycle_service.upsert_gate(assignment.cycle_id, module, True, actor_id, now=now)

        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise AlreadyExistsError("PortfolioNode", "identity", str(assignment.id)) from exc
    return root, node_count


def generate_for_assignment(assignment, actor_id) -> dict:
    """
    Create the portfolio tree for one teaching assignment, or return the existing one.

    Args:
        assignment: TeachingAssignment instance or PK.
        actor_id: Who triggered generation.

    Returns:
        {"created": bool, "root": root.to_dict(), "node_count": int}

    Raises:
        NotFoundError, AssignmentInvalidError, ModuleDisabledError,
        NoActiveTemplateError, GenerationFailedError
    """
    assignment = _resolve_assignment(assignment)
    assignment_id = assignment.id
    identity = assignment.identity_key()
    log_extra = {"assignment_id": assignment_id, "cycle_id": assignment.cycle_id, "user_id": actor_id}

    # An existing tree is returned whatever the gates or assignment status say now
    existing = _find_existing_root(identity)
    if existing is not None:
        return {
            "created": False,
            "root": existing.to_dict(),
            "node_count": len(collect_subtree(existing.id)),
        }

    _, subject = _validate_assignment(assignment)
    _require_generation_allowed(assignment.cycle_id)
    template = template_service.get_active_template()

    try:
        root, node_count = _insert_tree(assignment, subject, template, actor_id)
    except AlreadyExistsError:
        winner = _find_existing_root(identity)
        if winner is None:
            logger.error("Unique violation without a visible root", extra=log_extra)
            raise GenerationFailedError(assignment_id, "identity conflict")
        logger.info("Portfolio generated concurrently; returning existing root", extra=log_extra)
        return {
            "created": False,
            "root": winner.to_dict(),
            "node_count": len(collect_subtree(winner.id)),
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Portfolio generation failed", extra=log_extra)
        raise GenerationFailedError(assignment_id) from exc

    logger.info(
        "Portfolio generated: %s (%d nodes)", root.path, node_count,
        extra={**log_extra, "root_id": root.id},
    )
    return {"created": True, "root": root.to_dict(), "node_count": node_count}


def generate_portfolios(cycle_id, actor_id) -> dict:
    """
    Generate portfolios for every active assignment of a cycle.

    Each assignment is its own unit of work; one failure never rolls back
    another assignment's tree.

    Returns:
        {"cycle_id", "created_count", "skipped_count",
         "failures": [{"assignment_id", "reason"}]}
    """
    if db.session.get(AcademicCycle, cycle_id) is None:
        raise NotFoundError(resource="AcademicCycle", resource_id=cycle_id)
    _require_generation_allowed(cycle_id)
    template_service.get_active_template()

    assignment_ids = [
        row.id for row in
        TeachingAssignment.query
        .filter_by(cycle_id=cycle_id, is_active=True)
        .order_by(TeachingAssignment.id)
        .all()
    ]

    created = skipped = 0
    failures = []
    for assignment_id in assignment_ids:
        try:
            result = generate_for_assignment(assignment_id, actor_id)
        except (ValidationError, ModuleDisabledError, GenerationFailedError, NotFoundError) as exc:
            failures.append({"assignment_id": assignment_id, "reason": str(exc)})
            continue
        if result["created"]:
            created += 1
        else:
            skipped += 1

    logger.info(
        "Batch generation: %d created, %d skipped, %d failed",
        created, skipped, len(failures),
        extra={"cycle_id": cycle_id, "user_id": actor_id, "event_type": "portfolio_batch"},
    )
    return {
        "cycle_id": cycle_id,
        "created_count": created,
        "skipped_count": skipped,
        "failures": failures,
    }


# ═══════════════════════════════════════════════════════════════════
# RETRIEVAL
# ═══════════════════════════════════════════════════════════════════

def get_tree_for_role(role, requester_id, root_id=None):
    """
    Return nested portfolio trees visible to the requester.

    Without ``root_id``: list of trees. With ``root_id``: one tree, or
    NotFoundError when the root is missing OR outside the requester's scope.
    """
    query = access_scope.authorized_roots_query(role, requester_id)
    if root_id is not None:
        root = query.filter(PortfolioNode.id == root_id).first()
        if root is None:
            raise NotFoundError(resource="Portfolio", resource_id=root_id, scope=role)
        return _tree_for_root(root)

    return [_tree_for_root(r) for r in access_scope.resolve_authorized_roots(role, requester_id)]


def list_portfolios(cycle_id=None, state=None, instructor_id=None) -> dict:
    """
    Administrative listing of portfolio roots with filters.

    Returns:
        {"items": [...], "total", "by_state": {state: count}}
    """
    if state is not None and state not in NODE_STATES:
        raise ValidationError(f"Unknown portfolio state: {state!r}")

    q = (
        db.session.query(PortfolioNode, User, Subject)
        .join(User, User.id == PortfolioNode.instructor_id)
        .join(Subject, Subject.id == PortfolioNode.subject_id)
        .filter(PortfolioNode.parent_id.is_(None))
    )
    if cycle_id is not None:
        q = q.filter(PortfolioNode.cycle_id == cycle_id)
    if state is not None:
        q = q.filter(PortfolioNode.state == state)
    if instructor_id is not None:
        q = q.filter(PortfolioNode.instructor_id == instructor_id)

    items = []
    by_state = dict.fromkeys(sorted(NODE_STATES), 0)
    for root, instructor, subject in q.order_by(PortfolioNode.id).all():
        data = root.to_dict()
        data["instructor_name"] = instructor.full_name
        data["subject_code"] = subject.code
        data["subject_name"] = subject.name
        items.append(data)
        by_state[root.state] += 1

    return {"items": items, "total": len(items), "by_state": by_state}


# ═══════════════════════════════════════════════════════════════════
# PROGRESS
# ═══════════════════════════════════════════════════════════════════

def recompute_progress(root_id) -> int:
    """
    Recompute and persist completion_pct on a root.

    Counts every file in the closure of the root. Safe to call repeatedly
    and concurrently: the result depends only on current file states.
    """
    root = db.session.get(PortfolioNode, root_id)
    if root is None or root.parent_id is not None:
        raise NotFoundError(resource="Portfolio", resource_id=root_id)

    node_ids = [n.id for n in collect_subtree(root.id)]
    total, approved = (
        db.session.query(
            func.count(UploadedFile.id),
            func.coalesce(
                func.sum(case((UploadedFile.review_state == "approved", 1), else_=0)), 0,
            ),
        )
        .filter(UploadedFile.node_id.in_(node_ids))
        .one()
    )
    pct = _round_half_up(100 * approved / total) if total else 0

    root.completion_pct = pct
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Progress recompute failed", extra={"root_id": root_id})
        raise PersistenceError("progress recompute", "PortfolioNode") from exc

    logger.debug(
        "Progress recomputed: %d/%d approved → %d%%", approved, total, pct,
        extra={"root_id": root_id},
    )
    return pct


# ═══════════════════════════════════════════════════════════════════
# EVIDENCE FILES
# ═══════════════════════════════════════════════════════════════════

def register_uploaded_file(node_id, data: dict, uploader_id, role) -> dict:
    """
    Attach a stored file record to a leaf node.

    The blob is already persisted by the storage collaborator; ``data``
    carries {"original_name", "blob_id", "size_bytes", "mime_type"?}.
    Requires the ``document_management`` gate of the node's cycle.

    Returns:
        {"file": file.to_dict(), "root_id", "completion_pct", "progress_stale"}
    """
    node = db.session.get(PortfolioNode, node_id)
    scope = access_scope.authorized_roots_query(role, uploader_id)
    if node is None or node.state != "active":
        raise NotFoundError(resource="PortfolioNode", resource_id=node_id)
    root = find_root(node)
    if scope.filter(PortfolioNode.id == root.id).first() is None:
        raise NotFoundError(resource="PortfolioNode", resource_id=node_id, scope=role)
    if role == "verifier":
        raise ForbiddenError("Verifiers cannot upload evidence")

    cycle_service.require_module_enabled(node.cycle_id, MODULE_DOCUMENT_MANAGEMENT)

    if node.parent_id is None or PortfolioNode.query.filter_by(parent_id=node.id).first():
        raise ValidationError(
            "Files can only be attached to leaf folders",
            details={"node_id": node_id},
        )

    errors = {}
    original_name = (data.get("original_name") or "").strip()
    blob_id = (data.get("blob_id") or "").strip()
    if not original_name:
        errors["original_name"] = "required"
    if not blob_id:
        errors["blob_id"] = "required"
    try:
        size_bytes = int(data.get("size_bytes", 0))
        if size_bytes < 0:
            raise ValueError
    except (TypeError, ValueError):
        errors["size_bytes"] = "must be a non-negative integer"
    if errors:
        raise ValidationError("Invalid file data", details=errors)

    record = UploadedFile(
        node_id=node.id,
        uploader_id=uploader_id,
        original_name=original_name,
        blob_id=blob_id,
        size_bytes=size_bytes,
        mime_type=data.get("mime_type"),
        review_state="pending",
    )
    db.session.add(record)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("File registration failed", extra={"root_id": root.id})
        raise PersistenceError("file registration", "UploadedFile") from exc

    root_id = root.id
    try:
        pct = recompute_progress(root_id)
        stale = False
    except (PersistenceError, SQLAlchemyError):
        pct = db.session.get(PortfolioNode, root_id).completion_pct
        stale = True

    logger.info(
        "File %s attached to %s", record.original_name, node.path,
        extra={"root_id": root_id, "file_id": record.id, "user_id": uploader_id},
    )
    return {
        "file": record.to_dict(),
        "root_id": root_id,
        "completion_pct": pct,
        "progress_stale": stale,
    }
