"""
Structure Template Service — ordered section taxonomy for portfolio generation.

Transaction policy: seed_default_template() uses flush(), never commit().
Caller (CLI command or test) is responsible for db.session.commit().
"""

import logging

from evidence_portfolio.core.exceptions import NoActiveTemplateError
from evidence_portfolio.models import db
from evidence_portfolio.models.template import DEFAULT_SECTIONS, StructureSection

logger = logging.getLogger(__name__)


def get_active_template() -> list[dict]:
    """
    Return the active template as an ordered, nested list.

    Each entry: {"id", "name", "level", "sort_order", "children": [...]}.
    Siblings are ordered by (sort_order, id). Children of an inactive
    section are dropped with it.

    Raises:
        NoActiveTemplateError: no active top-level section exists.
    """
    sections = (
        StructureSection.query
        .filter_by(is_active=True)
        .order_by(StructureSection.sort_order, StructureSection.id)
        .all()
    )

    by_parent: dict[int | None, list[StructureSection]] = {}
    for section in sections:
        by_parent.setdefault(section.parent_id, []).append(section)

    def _nest(parent_id):
        return [
            {
                "id": s.id,
                "name": s.name,
                "level": s.level,
                "sort_order": s.sort_order,
                "children": _nest(s.id),
            }
            for s in by_parent.get(parent_id, [])
        ]

    tree = _nest(None)
    if not tree:
        raise NoActiveTemplateError()
    return tree


def seed_default_template() -> int:
    """
    Insert the default top-level sections that are missing.
    Safe to run multiple times — skips sections that already exist by name.

    Call this from the Flask CLI command or from test setup.
    """
    created = 0
    for data in DEFAULT_SECTIONS:
        exists = StructureSection.query.filter_by(
            parent_id=None, name=data["name"],
        ).first()
        if not exists:
            db.session.add(StructureSection(level=1, is_active=True, **data))
            created += 1

    if created > 0:
        db.session.flush()
        logger.info("Seeded %d structure template sections", created)

    return created
