"""initial_portfolio_schema

Creates the evidence portfolio schema:
  - users, subjects                         — directory rows from bulk import
  - academic_cycles, module_gates           — lifecycle state machine + gates
  - teaching_assignments, verifier_assignments
  - structure_sections                      — template taxonomy
  - portfolio_nodes, uploaded_files         — hierarchy + evidence

Partial unique indexes:
  - uq_academic_cycle_single_active  (state)            WHERE state = 'active'
  - uq_portfolio_root_identity       (instructor, subject, cycle, group)
                                                         WHERE parent_id IS NULL

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1f0a7c2b94
Revises:
Create Date: 2026-10-17 09:12:41.308115
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1f0a7c2b94'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Directory ─────────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column(
                "role", sa.String(length=20), nullable=False,
                server_default="instructor",
                comment="administrator | instructor | verifier",
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "subjects" not in existing:
        op.create_table(
            "subjects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("credits", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    # ── AcademicCycle ─────────────────────────────────────────────────────
    if "academic_cycles" not in existing:
        op.create_table(
            "academic_cycles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column(
                "period_label", sa.String(length=50), nullable=False,
                comment="Academic period shown to users, e.g. 2025-I",
            ),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column(
                "state", sa.String(length=20), nullable=False,
                server_default="preparing",
                comment="preparing | initializing | active | verifying | closing | archived",
            ),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_by", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "state IN ('preparing','initializing','active',"
                "'verifying','closing','archived')",
                name="ck_academic_cycle_state",
            ),
            sa.CheckConstraint("end_date >= start_date", name="ck_academic_cycle_dates"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )
        op.create_index(
            "uq_academic_cycle_single_active", "academic_cycles", ["state"],
            unique=True,
            sqlite_where=sa.text("state = 'active'"),
            postgresql_where=sa.text("state = 'active'"),
        )
        op.create_index(
            "ix_academic_cycle_period", "academic_cycles", ["period_label", "year"],
        )

    # ── ModuleGate ────────────────────────────────────────────────────────
    if "module_gates" not in existing:
        op.create_table(
            "module_gates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("cycle_id", sa.Integer(), nullable=False),
            sa.Column("module", sa.String(length=50), nullable=False),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("enabled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["cycle_id"], ["academic_cycles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cycle_id", "module", name="uq_module_gate_cycle_module"),
        )
        op.create_index("ix_module_gates_cycle_id", "module_gates", ["cycle_id"])

    # ── Assignments ───────────────────────────────────────────────────────
    if "teaching_assignments" not in existing:
        op.create_table(
            "teaching_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("instructor_id", sa.Integer(), nullable=False),
            sa.Column("subject_id", sa.Integer(), nullable=False),
            sa.Column("cycle_id", sa.Integer(), nullable=False),
            sa.Column("group_label", sa.String(length=20), nullable=False, server_default="A"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["cycle_id"], ["academic_cycles.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "instructor_id", "subject_id", "cycle_id", "group_label",
                name="uq_teaching_assignment_identity",
            ),
        )
        op.create_index(
            "ix_teaching_assignments_instructor_id", "teaching_assignments", ["instructor_id"],
        )
        op.create_index(
            "ix_teaching_assignments_cycle_id", "teaching_assignments", ["cycle_id"],
        )

    if "verifier_assignments" not in existing:
        op.create_table(
            "verifier_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("verifier_id", sa.Integer(), nullable=False),
            sa.Column("instructor_id", sa.Integer(), nullable=False),
            sa.Column("cycle_id", sa.Integer(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["verifier_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["cycle_id"], ["academic_cycles.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "verifier_id", "instructor_id", "cycle_id", name="uq_verifier_assignment",
            ),
        )
        op.create_index(
            "ix_verifier_assignments_verifier_id", "verifier_assignments", ["verifier_id"],
        )
        op.create_index(
            "ix_verifier_assignment_scope", "verifier_assignments", ["verifier_id", "is_active"],
        )

    # ── StructureSection ──────────────────────────────────────────────────
    if "structure_sections" not in existing:
        op.create_table(
            "structure_sections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("icon", sa.String(length=60), nullable=True),
            sa.Column("color", sa.String(length=20), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("level >= 1", name="ck_structure_section_level"),
            sa.ForeignKeyConstraint(["parent_id"], ["structure_sections.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("parent_id", "name", name="uq_structure_section_parent_name"),
        )
        op.create_index(
            "ix_structure_sections_parent_id", "structure_sections", ["parent_id"],
        )

    # ── PortfolioNode ─────────────────────────────────────────────────────
    if "portfolio_nodes" not in existing:
        op.create_table(
            "portfolio_nodes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("instructor_id", sa.Integer(), nullable=False),
            sa.Column("subject_id", sa.Integer(), nullable=False),
            sa.Column("assignment_id", sa.Integer(), nullable=False),
            sa.Column("cycle_id", sa.Integer(), nullable=False),
            sa.Column("group_label", sa.String(length=20), nullable=False, server_default="A"),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("section_id", sa.Integer(), nullable=True),
            sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("path", sa.String(length=1000), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("state", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column(
                "completion_pct", sa.Float(), nullable=True,
                comment="Roots only: round(100 * approved / total) over the whole subtree",
            ),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("state IN ('active','archived')", name="ck_portfolio_node_state"),
            sa.CheckConstraint(
                "(parent_id IS NULL AND level = 0) OR (parent_id IS NOT NULL AND level > 0)",
                name="ck_portfolio_node_root_level",
            ),
            sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(
                ["assignment_id"], ["teaching_assignments.id"], ondelete="RESTRICT",
            ),
            sa.ForeignKeyConstraint(["cycle_id"], ["academic_cycles.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["parent_id"], ["portfolio_nodes.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(
                ["section_id"], ["structure_sections.id"], ondelete="SET NULL",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "uq_portfolio_root_identity", "portfolio_nodes",
            ["instructor_id", "subject_id", "cycle_id", "group_label"],
            unique=True,
            sqlite_where=sa.text("parent_id IS NULL"),
            postgresql_where=sa.text("parent_id IS NULL"),
        )
        op.create_index("ix_portfolio_node_cycle_level", "portfolio_nodes", ["cycle_id", "level"])
        op.create_index("ix_portfolio_nodes_parent_id", "portfolio_nodes", ["parent_id"])
        op.create_index("ix_portfolio_nodes_instructor_id", "portfolio_nodes", ["instructor_id"])
        op.create_index("ix_portfolio_nodes_assignment_id", "portfolio_nodes", ["assignment_id"])
        op.create_index("ix_portfolio_nodes_cycle_id", "portfolio_nodes", ["cycle_id"])

    # ── UploadedFile ──────────────────────────────────────────────────────
    if "uploaded_files" not in existing:
        op.create_table(
            "uploaded_files",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("node_id", sa.Integer(), nullable=False),
            sa.Column("uploader_id", sa.Integer(), nullable=True),
            sa.Column("original_name", sa.String(length=255), nullable=False),
            sa.Column(
                "blob_id", sa.String(length=128), nullable=False,
                comment="Opaque id of the persisted blob in file storage",
            ),
            sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("mime_type", sa.String(length=120), nullable=True),
            sa.Column(
                "review_state", sa.String(length=20), nullable=False,
                server_default="pending",
            ),
            sa.Column("reviewer_id", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "review_state IN ('pending','approved','rejected','under_review')",
                name="ck_uploaded_file_review_state",
            ),
            sa.CheckConstraint("size_bytes >= 0", name="ck_uploaded_file_size"),
            sa.ForeignKeyConstraint(["node_id"], ["portfolio_nodes.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_uploaded_files_node_id", "uploaded_files", ["node_id"])
        op.create_index(
            "ix_uploaded_file_node_state", "uploaded_files", ["node_id", "review_state"],
        )


def downgrade():
    op.drop_table("uploaded_files")
    op.drop_table("portfolio_nodes")
    op.drop_table("structure_sections")
    op.drop_table("verifier_assignments")
    op.drop_table("teaching_assignments")
    op.drop_table("module_gates")
    op.drop_table("academic_cycles")
    op.drop_table("subjects")
    op.drop_table("users")
