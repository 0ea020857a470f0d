"""
Academic cycle lifecycle models.

Models:
    - AcademicCycle: one recurring academic period (e.g. "2025-I")
    - ModuleGate:    per-cycle enabled/disabled flag for a subsystem

Architecture:
    AcademicCycle ──1:N──▶ ModuleGate
    AcademicCycle ──1:N──▶ TeachingAssignment / VerifierAssignment / PortfolioNode

Lifecycle states:
    preparing → initializing → active → verifying → closing → archived
    active → preparing, verifying → active  (operator rollback edges)
"""

from datetime import datetime, timezone

from evidence_portfolio.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CYCLE_STATES = (
    "preparing", "initializing", "active",
    "verifying", "closing", "archived",
)

MODULE_DATA_INTAKE = "data_intake"
MODULE_DOCUMENT_MANAGEMENT = "document_management"
MODULE_VERIFICATION = "verification"
MODULE_PORTFOLIO_GENERATION = "portfolio_generation"
MODULE_REPORTING = "reporting"

MODULES = frozenset({
    MODULE_DATA_INTAKE,
    MODULE_DOCUMENT_MANAGEMENT,
    MODULE_VERIFICATION,
    MODULE_PORTFOLIO_GENERATION,
    MODULE_REPORTING,
})


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

CYCLE_TRANSITIONS = {
    "preparing":    ["initializing"],
    "initializing": ["active"],
    "active":       ["verifying", "preparing"],
    "verifying":    ["closing", "active"],
    "closing":      ["archived"],
    "archived":     [],
}

# Gate mutations applied when a cycle ENTERS a state.
# "enable"/"disable" list module names; "disable_all" switches every gate off.
STATE_GATE_EFFECTS = {
    "initializing": {"enable": [MODULE_DATA_INTAKE], "disable": []},
    "active":       {"enable": [MODULE_DATA_INTAKE], "disable": []},
    "verifying":    {
        "enable": [MODULE_VERIFICATION, MODULE_DOCUMENT_MANAGEMENT],
        "disable": [MODULE_DATA_INTAKE],
    },
    "closing":      {"disable_all": True},
    "archived":     {"disable_all": True},
}


def validate_cycle_transition(old_state, new_state):
    """Return True if AcademicCycle state transition is valid."""
    return new_state in CYCLE_TRANSITIONS.get(old_state, [])


def _utcnow():
    return datetime.now(timezone.utc)


class AcademicCycle(db.Model):
    """
    One academic cycle. Mutated only through cycle_service.transition_cycle.

    ``version`` is the mapper version counter: every UPDATE is issued as
    ``... WHERE id = :id AND version = :old`` so a concurrent writer makes the
    statement match zero rows and SQLAlchemy raises StaleDataError.
    """

    __tablename__ = "academic_cycles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    period_label = db.Column(
        db.String(50), nullable=False,
        comment="Academic period shown to users, e.g. 2025-I",
    )
    year = db.Column(db.Integer, nullable=True)
    state = db.Column(
        db.String(20), nullable=False, default="preparing",
        comment="preparing | initializing | active | verifying | closing | archived",
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Actor ids come from the resolved request identity, not a FK
    closed_by = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint(
            "state IN ('preparing','initializing','active',"
            "'verifying','closing','archived')",
            name="ck_academic_cycle_state",
        ),
        db.CheckConstraint("end_date >= start_date", name="ck_academic_cycle_dates"),
        # At most one active cycle platform-wide
        db.Index(
            "uq_academic_cycle_single_active", "state", unique=True,
            sqlite_where=db.text("state = 'active'"),
            postgresql_where=db.text("state = 'active'"),
        ),
        db.Index("ix_academic_cycle_period", "period_label", "year"),
    )

    gates = db.relationship(
        "ModuleGate", backref="cycle", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ModuleGate.module",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "period_label": self.period_label,
            "year": self.year,
            "state": self.state,
            "version": self.version,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<AcademicCycle #{self.id} {self.name} {self.state}>"


class ModuleGate(db.Model):
    """Per-cycle module switch. One row per (cycle, module), upserted."""

    __tablename__ = "module_gates"

    id = db.Column(db.Integer, primary_key=True)
    cycle_id = db.Column(
        db.Integer, db.ForeignKey("academic_cycles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    module = db.Column(db.String(50), nullable=False)
    enabled = db.Column(db.Boolean, nullable=False, default=False)
    enabled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    disabled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    note = db.Column(db.Text, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("cycle_id", "module", name="uq_module_gate_cycle_module"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "cycle_id": self.cycle_id,
            "module": self.module,
            "enabled": self.enabled,
            "enabled_at": self.enabled_at.isoformat() if self.enabled_at else None,
            "disabled_at": self.disabled_at.isoformat() if self.disabled_at else None,
            "note": self.note,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ModuleGate cycle={self.cycle_id} {self.module} enabled={self.enabled}>"
