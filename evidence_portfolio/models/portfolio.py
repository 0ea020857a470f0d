"""
Portfolio hierarchy models.

Models:
    - PortfolioNode: self-referential folder tree, one root per teaching assignment
    - UploadedFile:  evidence file attached to a leaf node

Architecture:
    TeachingAssignment ──1:1──▶ PortfolioNode (root, level 0)
    PortfolioNode ──1:N──▶ PortfolioNode   (parent_id pointer, no back-references)
    PortfolioNode ──1:N──▶ UploadedFile

Identity of a portfolio is (instructor, subject, cycle, group) on the root row,
enforced by a partial unique index so that concurrent generators cannot both
insert a root.

Review states:
    UploadedFile: pending → approved | rejected | under_review (any → any by a verifier)
"""

from datetime import datetime, timezone

from evidence_portfolio.models import db


NODE_STATES = frozenset({"active", "archived"})

REVIEW_STATES = ("pending", "approved", "rejected", "under_review")

# States a verifier may set; "pending" is only ever the initial state.
REVIEWABLE_STATES = frozenset({"approved", "rejected", "under_review"})


def _utcnow():
    return datetime.now(timezone.utc)


class PortfolioNode(db.Model):
    """
    One folder in a portfolio tree.

    Root rows: parent_id IS NULL, level 0, completion_pct maintained by
    portfolio_service.recompute_progress. Non-root rows copy the root's
    ownership columns so scope filters never need to walk the tree.
    ``path`` is the breadcrumb of ancestor names, written once at creation.
    """

    __tablename__ = "portfolio_nodes"

    id = db.Column(db.Integer, primary_key=True)
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    subject_id = db.Column(
        db.Integer, db.ForeignKey("subjects.id", ondelete="RESTRICT"),
        nullable=False,
    )
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("teaching_assignments.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    cycle_id = db.Column(
        db.Integer, db.ForeignKey("academic_cycles.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    group_label = db.Column(db.String(20), nullable=False, default="A")
    parent_id = db.Column(
        db.Integer, db.ForeignKey("portfolio_nodes.id", ondelete="RESTRICT"),
        nullable=True, index=True,
    )
    section_id = db.Column(
        db.Integer, db.ForeignKey("structure_sections.id", ondelete="SET NULL"),
        nullable=True,
    )
    level = db.Column(db.Integer, nullable=False, default=0)
    path = db.Column(db.String(1000), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    state = db.Column(db.String(20), nullable=False, default="active")
    completion_pct = db.Column(
        db.Float, nullable=True,
        comment="Roots only: round(100 * approved / total) over the whole subtree",
    )

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint("state IN ('active','archived')", name="ck_portfolio_node_state"),
        db.CheckConstraint(
            "(parent_id IS NULL AND level = 0) OR (parent_id IS NOT NULL AND level > 0)",
            name="ck_portfolio_node_root_level",
        ),
        db.Index(
            "uq_portfolio_root_identity",
            "instructor_id", "subject_id", "cycle_id", "group_label",
            unique=True,
            sqlite_where=db.text("parent_id IS NULL"),
            postgresql_where=db.text("parent_id IS NULL"),
        ),
        db.Index("ix_portfolio_node_cycle_level", "cycle_id", "level"),
    )

    @property
    def is_root(self):
        return self.parent_id is None

    def to_dict(self):
        result = {
            "id": self.id,
            "parent_id": self.parent_id,
            "instructor_id": self.instructor_id,
            "subject_id": self.subject_id,
            "assignment_id": self.assignment_id,
            "cycle_id": self.cycle_id,
            "group_label": self.group_label,
            "section_id": self.section_id,
            "level": self.level,
            "path": self.path,
            "name": self.name,
            "state": self.state,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.is_root:
            result["completion_pct"] = int(self.completion_pct or 0)
        return result

    def __repr__(self):
        return f"<PortfolioNode #{self.id} L{self.level} {self.path}>"


class UploadedFile(db.Model):
    """Evidence file metadata. The blob itself lives in external storage."""

    __tablename__ = "uploaded_files"

    id = db.Column(db.Integer, primary_key=True)
    node_id = db.Column(
        db.Integer, db.ForeignKey("portfolio_nodes.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    uploader_id = db.Column(db.Integer, nullable=True)
    original_name = db.Column(db.String(255), nullable=False)
    blob_id = db.Column(
        db.String(128), nullable=False,
        comment="Opaque id of the persisted blob in file storage",
    )
    size_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    mime_type = db.Column(db.String(120), nullable=True)

    review_state = db.Column(db.String(20), nullable=False, default="pending")
    reviewer_id = db.Column(db.Integer, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "review_state IN ('pending','approved','rejected','under_review')",
            name="ck_uploaded_file_review_state",
        ),
        db.CheckConstraint("size_bytes >= 0", name="ck_uploaded_file_size"),
        db.Index("ix_uploaded_file_node_state", "node_id", "review_state"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "node_id": self.node_id,
            "uploader_id": self.uploader_id,
            "original_name": self.original_name,
            "blob_id": self.blob_id,
            "size_bytes": self.size_bytes,
            "mime_type": self.mime_type,
            "review_state": self.review_state,
            "reviewer_id": self.reviewer_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "comment": self.comment,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<UploadedFile #{self.id} node={self.node_id} {self.review_state}>"
