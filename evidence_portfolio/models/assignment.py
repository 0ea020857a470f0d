"""
Assignment registry models.

Models:
    - TeachingAssignment: instructor × subject × group within a cycle
    - VerifierAssignment: verifier → instructor coverage within a cycle

TeachingAssignment rows are the input to portfolio generation;
VerifierAssignment rows define which portfolios a verifier may see and review.
"""

from datetime import datetime, timezone

from evidence_portfolio.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class TeachingAssignment(db.Model):
    """One instructor teaching one subject to one group in one cycle."""

    __tablename__ = "teaching_assignments"

    id = db.Column(db.Integer, primary_key=True)
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    subject_id = db.Column(
        db.Integer, db.ForeignKey("subjects.id", ondelete="RESTRICT"),
        nullable=False,
    )
    cycle_id = db.Column(
        db.Integer, db.ForeignKey("academic_cycles.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    group_label = db.Column(db.String(20), nullable=False, default="A")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "instructor_id", "subject_id", "cycle_id", "group_label",
            name="uq_teaching_assignment_identity",
        ),
    )

    instructor = db.relationship("User", foreign_keys=[instructor_id])
    subject = db.relationship("Subject", foreign_keys=[subject_id])

    def identity_key(self):
        """(instructor, subject, cycle, group) — the canonical portfolio identity."""
        return (self.instructor_id, self.subject_id, self.cycle_id, self.group_label)

    def to_dict(self):
        return {
            "id": self.id,
            "instructor_id": self.instructor_id,
            "subject_id": self.subject_id,
            "cycle_id": self.cycle_id,
            "group_label": self.group_label,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<TeachingAssignment #{self.id} instructor={self.instructor_id} "
            f"subject={self.subject_id} group={self.group_label}>"
        )


class VerifierAssignment(db.Model):
    """Verifier coverage of one instructor's portfolios within a cycle."""

    __tablename__ = "verifier_assignments"

    id = db.Column(db.Integer, primary_key=True)
    verifier_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    cycle_id = db.Column(
        db.Integer, db.ForeignKey("academic_cycles.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "verifier_id", "instructor_id", "cycle_id",
            name="uq_verifier_assignment",
        ),
        db.Index("ix_verifier_assignment_scope", "verifier_id", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "verifier_id": self.verifier_id,
            "instructor_id": self.instructor_id,
            "cycle_id": self.cycle_id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<VerifierAssignment verifier={self.verifier_id} "
            f"instructor={self.instructor_id} cycle={self.cycle_id}>"
        )
