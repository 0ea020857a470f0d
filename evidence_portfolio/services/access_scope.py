"""
Role-based scope resolution for portfolio reads and reviews.

    administrator → every portfolio root
    instructor    → roots they own
    verifier      → roots of instructors they are actively assigned to,
                    within the assignment's cycle

Out-of-scope reads surface as NotFoundError in the calling service.
"""

import logging

from sqlalchemy import and_, exists

from evidence_portfolio.core.exceptions import ValidationError
from evidence_portfolio.models.assignment import VerifierAssignment
from evidence_portfolio.models.portfolio import PortfolioNode

logger = logging.getLogger(__name__)


def _roots():
    return PortfolioNode.query.filter(PortfolioNode.parent_id.is_(None))


def _administrator_roots(requester_id):
    return _roots()


def _instructor_roots(requester_id):
    return _roots().filter(PortfolioNode.instructor_id == requester_id)


def verifier_coverage_clause(verifier_id):
    """EXISTS clause matching PortfolioNode rows covered by the verifier."""
    return exists().where(and_(
        VerifierAssignment.verifier_id == verifier_id,
        VerifierAssignment.is_active.is_(True),
        VerifierAssignment.instructor_id == PortfolioNode.instructor_id,
        VerifierAssignment.cycle_id == PortfolioNode.cycle_id,
    ))


def _verifier_roots(requester_id):
    return _roots().filter(verifier_coverage_clause(requester_id))


_SCOPE_RESOLVERS = {
    "administrator": _administrator_roots,
    "instructor": _instructor_roots,
    "verifier": _verifier_roots,
}


def authorized_roots_query(role, requester_id):
    """Query of root PortfolioNodes visible to (role, requester_id)."""
    resolver = _SCOPE_RESOLVERS.get(role)
    if resolver is None:
        raise ValidationError(f"Unknown role: {role!r}", details={"role": "unknown"})
    return resolver(requester_id)


def resolve_authorized_roots(role, requester_id) -> list[PortfolioNode]:
    return (
        authorized_roots_query(role, requester_id)
        .order_by(PortfolioNode.cycle_id, PortfolioNode.name, PortfolioNode.id)
        .all()
    )


def verifier_covers(verifier_id, instructor_id, cycle_id) -> bool:
    """True when an active VerifierAssignment links verifier to instructor in cycle."""
    return VerifierAssignment.query.filter_by(
        verifier_id=verifier_id,
        instructor_id=instructor_id,
        cycle_id=cycle_id,
        is_active=True,
    ).first() is not None
