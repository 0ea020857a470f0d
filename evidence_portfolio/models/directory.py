"""
Directory models — users and subjects.

Rows here are produced by the roster/course bulk-import process. The core
only reads them to resolve an assignment's instructor and subject and to
label generated portfolios.
"""

from datetime import datetime, timezone

from evidence_portfolio.models import db

USER_ROLES = frozenset({"administrator", "instructor", "verifier"})


class User(db.Model):
    """Platform user. ``role`` is the primary role resolved at login."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(
        db.String(20), nullable=False, default="instructor",
        comment="administrator | instructor | verifier",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User #{self.id} {self.email} {self.role}>"


class Subject(db.Model):
    """Course taught within a cycle."""

    __tablename__ = "subjects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    credits = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "credits": self.credits,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Subject #{self.id} {self.code}>"
