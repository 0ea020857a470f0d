"""
Structure template — the ordered section taxonomy every portfolio is built from.

StructureSection is a self-referential tree: level-1 rows are the top-level
folders of a portfolio, deeper rows (parent_id set) become nested folders.
Read-mostly; seeded once by template_service.seed_default_template().
"""

from datetime import datetime, timezone

from evidence_portfolio.models import db


# ── Default taxonomy ─────────────────────────────────────────────────────────

DEFAULT_SECTIONS = [
    {
        "name": "I. General Information",
        "description": "General information about the instructor and the subject",
        "sort_order": 1,
        "icon": "fas fa-info-circle",
        "color": "#007bff",
    },
    {
        "name": "II. Academic Planning",
        "description": "Curricular planning documents",
        "sort_order": 2,
        "icon": "fas fa-calendar-alt",
        "color": "#28a745",
    },
    {
        "name": "III. Session Development",
        "description": "Class materials and session evidence",
        "sort_order": 3,
        "icon": "fas fa-chalkboard-teacher",
        "color": "#ffc107",
    },
    {
        "name": "IV. Assessment",
        "description": "Assessment instruments and evidence",
        "sort_order": 4,
        "icon": "fas fa-clipboard-check",
        "color": "#dc3545",
    },
    {
        "name": "V. Research and Innovation",
        "description": "Research projects and innovation activities",
        "sort_order": 5,
        "icon": "fas fa-search",
        "color": "#6f42c1",
    },
]


class StructureSection(db.Model):
    """One folder definition of the portfolio structure template."""

    __tablename__ = "structure_sections"

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("structure_sections.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    level = db.Column(db.Integer, nullable=False, default=1)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    icon = db.Column(db.String(60), nullable=True)
    color = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("level >= 1", name="ck_structure_section_level"),
        db.UniqueConstraint("parent_id", "name", name="uq_structure_section_parent_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "sort_order": self.sort_order,
            "icon": self.icon,
            "color": self.color,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<StructureSection #{self.id} L{self.level} {self.name}>"
