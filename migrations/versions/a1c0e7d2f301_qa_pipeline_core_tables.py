"""qa_pipeline_core_tables

Creates the QA pipeline tables:
  - evidence_artifacts    — captured proof per executed test
  - test_workflows        — per-test state machine rows
  - red_flags             — append-only detector output
  - verification_reports  — append-only verifier output
  - fix_attempts          — automated fix attempts (1..3 per workflow)
  - fix_learnings         — reusable fixes keyed by failure signature

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c0e7d2f301
Revises:
Create Date: 2026-10-18 09:12:44.518202
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c0e7d2f301'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── EvidenceArtifact ──────────────────────────────────────────────────
    if "evidence_artifacts" not in existing:
        op.create_table(
            "evidence_artifacts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("epic_id", sa.String(length=100), nullable=False),
            sa.Column("test_id", sa.String(length=200), nullable=False),
            sa.Column(
                "test_type", sa.String(length=20), nullable=False,
                comment="ui | api | unit | integration",
            ),
            sa.Column("test_name", sa.String(length=500), nullable=False),
            sa.Column("expected_outcome", sa.Text(), nullable=True),
            sa.Column("actual_outcome", sa.Text(), nullable=True),
            sa.Column(
                "pass_fail", sa.String(length=10), nullable=False,
                server_default="pending",
                comment="pass | fail | pending",
            ),
            sa.Column("screenshot_before", sa.String(length=1000), nullable=True),
            sa.Column("screenshot_after", sa.String(length=1000), nullable=True),
            sa.Column("dom_snapshot_before", sa.String(length=1000), nullable=True),
            sa.Column("dom_snapshot", sa.String(length=1000), nullable=True),
            sa.Column("console_logs", sa.String(length=1000), nullable=True),
            sa.Column("network_trace", sa.String(length=1000), nullable=True),
            sa.Column("http_request", sa.String(length=1000), nullable=True),
            sa.Column("http_response", sa.String(length=1000), nullable=True),
            sa.Column("coverage_report", sa.String(length=1000), nullable=True),
            sa.Column(
                "metadata_json", sa.Text(), nullable=True,
                comment="Producer hints: tool calls, expectations, coverage baseline.",
            ),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("stack_trace", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "test_type IN ('ui','api','unit','integration')", name="ck_evidence_test_type",
            ),
            sa.CheckConstraint(
                "pass_fail IN ('pass','fail','pending')", name="ck_evidence_pass_fail",
            ),
        )
        op.create_index("ix_evidence_artifacts_epic_id", "evidence_artifacts", ["epic_id"])
        op.create_index("ix_evidence_artifacts_test_id", "evidence_artifacts", ["test_id"])
        op.create_index("ix_evidence_test_epic", "evidence_artifacts", ["test_id", "epic_id"])

    # ── TestWorkflow ──────────────────────────────────────────────────────
    if "test_workflows" not in existing:
        op.create_table(
            "test_workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=200), nullable=False),
            sa.Column("epic_id", sa.String(length=100), nullable=False),
            sa.Column("test_type", sa.String(length=20), nullable=False),
            sa.Column("test_definition_json", sa.Text(), nullable=True),
            sa.Column(
                "current_stage", sa.String(length=20), nullable=False,
                server_default="pending",
            ),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                server_default="pending",
                comment="pending | in_progress | completed | failed",
            ),
            sa.Column(
                "retry_count", sa.Integer(), nullable=False, server_default="0",
                comment="Persisted fix-loop counter (0..3).",
            ),
            sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "error_kind", sa.String(length=30), nullable=True,
                comment="timeout | exhausted_retries | configuration | load_error | cancelled",
            ),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("handoff_path", sa.String(length=1000), nullable=True),
            sa.Column("handoff_summary", sa.Text(), nullable=True),
            sa.Column("execution_result_json", sa.Text(), nullable=True),
            sa.Column("detection_result_json", sa.Text(), nullable=True),
            sa.Column("verification_result_json", sa.Text(), nullable=True),
            sa.Column("fixing_result_json", sa.Text(), nullable=True),
            sa.Column("learning_result_json", sa.Text(), nullable=True),
            sa.Column("stage_history_json", sa.Text(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("stage_started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "current_stage IN ('pending','execution','detection','verification',"
                "'fixing','learning','completed','failed')",
                name="ck_workflow_stage",
            ),
            sa.CheckConstraint(
                "status IN ('pending','in_progress','completed','failed')",
                name="ck_workflow_status",
            ),
            sa.CheckConstraint("retry_count >= 0 AND retry_count <= 3", name="ck_workflow_retry_cap"),
        )
        op.create_index("ix_test_workflows_test_id", "test_workflows", ["test_id"])
        op.create_index("ix_test_workflows_epic_id", "test_workflows", ["epic_id"])
        op.create_index("ix_test_workflows_status", "test_workflows", ["status"])

    # ── RedFlag ───────────────────────────────────────────────────────────
    if "red_flags" not in existing:
        op.create_table(
            "red_flags",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("epic_id", sa.String(length=100), nullable=False),
            sa.Column("test_id", sa.String(length=200), nullable=False),
            sa.Column("evidence_id", sa.Integer(), nullable=True),
            sa.Column(
                "flag_type", sa.String(length=30), nullable=False,
                comment="missing_evidence | inconsistent | tool_execution | timing | coverage",
            ),
            sa.Column("severity", sa.String(length=10), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("proof_json", sa.Text(), nullable=True),
            sa.Column("detected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["evidence_id"], ["evidence_artifacts.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "flag_type IN ('missing_evidence','inconsistent','tool_execution','timing','coverage')",
                name="ck_red_flag_type",
            ),
            sa.CheckConstraint(
                "severity IN ('critical','high','medium','low')", name="ck_red_flag_severity",
            ),
        )
        op.create_index("ix_red_flags_epic_id", "red_flags", ["epic_id"])
        op.create_index("ix_red_flags_test_id", "red_flags", ["test_id"])
        op.create_index("ix_red_flags_evidence_id", "red_flags", ["evidence_id"])

    # ── VerificationReport ────────────────────────────────────────────────
    if "verification_reports" not in existing:
        op.create_table(
            "verification_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=200), nullable=False),
            sa.Column("epic_id", sa.String(length=100), nullable=False),
            sa.Column("evidence_id", sa.Integer(), nullable=True),
            sa.Column("workflow_id", sa.Integer(), nullable=True),
            sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0"),
            sa.Column(
                "recommendation", sa.String(length=20), nullable=False,
                comment="accept | reject | manual_review",
            ),
            sa.Column("evidence_reviewed_json", sa.Text(), nullable=True),
            sa.Column("cross_validation_json", sa.Text(), nullable=True),
            sa.Column("red_flags_json", sa.Text(), nullable=True),
            sa.Column("integrity_json", sa.Text(), nullable=True),
            sa.Column("skeptical_json", sa.Text(), nullable=True),
            sa.Column("confidence_breakdown_json", sa.Text(), nullable=True),
            sa.Column("concerns_json", sa.Text(), nullable=True),
            sa.Column("summary", sa.Text(), nullable=False, server_default=""),
            sa.Column("reasoning", sa.Text(), nullable=False, server_default=""),
            sa.Column("verifier_model", sa.String(length=80), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["evidence_id"], ["evidence_artifacts.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["workflow_id"], ["test_workflows.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "recommendation IN ('accept','reject','manual_review')",
                name="ck_verification_recommendation",
            ),
            sa.CheckConstraint(
                "confidence_score >= 0 AND confidence_score <= 100",
                name="ck_verification_confidence_range",
            ),
        )
        op.create_index("ix_verification_reports_test_id", "verification_reports", ["test_id"])
        op.create_index("ix_verification_reports_epic_id", "verification_reports", ["epic_id"])
        op.create_index("ix_verification_reports_workflow_id", "verification_reports", ["workflow_id"])

    # ── FixAttempt ────────────────────────────────────────────────────────
    if "fix_attempts" not in existing:
        op.create_table(
            "fix_attempts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("test_id", sa.String(length=200), nullable=False),
            sa.Column("attempt_number", sa.Integer(), nullable=False),
            sa.Column("root_cause", sa.Text(), nullable=False, server_default=""),
            sa.Column(
                "classification", sa.String(length=20), nullable=False,
                comment="syntax | logic | integration | environment",
            ),
            sa.Column("complexity", sa.String(length=20), nullable=False, server_default="moderate"),
            sa.Column(
                "model_tier", sa.String(length=20), nullable=False,
                comment="fast | balanced | strong",
            ),
            sa.Column("model", sa.String(length=80), nullable=True),
            sa.Column("strategy", sa.String(length=50), nullable=False),
            sa.Column("reused_learning", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("outcome", sa.String(length=10), nullable=False, server_default="failure"),
            sa.Column("changes_made", sa.Text(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("verification_passed", sa.Boolean(), nullable=True),
            sa.Column("cost", sa.Float(), nullable=False, server_default="0"),
            sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workflow_id"], ["test_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "attempt_number", name="uq_fix_attempt_number"),
            sa.CheckConstraint(
                "attempt_number >= 1 AND attempt_number <= 3", name="ck_fix_attempt_bounds",
            ),
            sa.CheckConstraint("outcome IN ('success','failure')", name="ck_fix_attempt_outcome"),
        )
        op.create_index("ix_fix_attempts_workflow_id", "fix_attempts", ["workflow_id"])

    # ── FixLearning ───────────────────────────────────────────────────────
    if "fix_learnings" not in existing:
        op.create_table(
            "fix_learnings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(
                "pattern_signature", sa.String(length=400), nullable=False,
                comment="test_type|sorted flag types|classification",
            ),
            sa.Column("test_type", sa.String(length=20), nullable=False),
            sa.Column("flag_types", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("classification", sa.String(length=20), nullable=False),
            sa.Column("successful_strategy", sa.String(length=50), nullable=False),
            sa.Column("error_pattern", sa.Text(), nullable=True),
            sa.Column("reuse_count", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("pattern_signature", name="uq_fix_learning_signature"),
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    for table in (
        "fix_learnings",
        "fix_attempts",
        "verification_reports",
        "red_flags",
        "test_workflows",
        "evidence_artifacts",
    ):
        if table in existing:
            op.drop_table(table)
