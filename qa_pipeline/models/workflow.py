"""
QA Verification Pipeline
Test workflow model — per-test state machine row.

Lifecycle:
    pending → execution → detection → verification → (fixing → verification)*
            → learning → completed
    any non-terminal stage → failed

``completed`` and ``failed`` are terminal: once reached, neither the stage
nor the status of the row can change again. ``retry_count`` is the persisted
fix-loop counter; crash recovery resumes the loop from it instead of
re-deriving it.
"""

import json
from datetime import datetime, timezone

from sqlalchemy.orm import validates

from qa_pipeline.core.exceptions import InvalidTransitionError
from qa_pipeline.models import db, iso, utcnow

STAGES = (
    "pending", "execution", "detection", "verification",
    "fixing", "learning", "completed", "failed",
)
STATUSES = ("pending", "in_progress", "completed", "failed")
TERMINAL_STAGES = ("completed", "failed")
RESULT_STAGES = ("execution", "detection", "verification", "fixing", "learning")

# Error kinds surfaced in reports and handoffs
ERROR_KINDS = ("timeout", "exhausted_retries", "configuration", "load_error", "cancelled")

WORKFLOW_TRANSITIONS = {
    "pending":      ["execution"],
    "execution":    ["detection", "failed"],
    "detection":    ["verification", "failed"],
    "verification": ["fixing", "learning", "failed"],
    "fixing":       ["verification", "learning", "failed"],
    "learning":     ["completed", "failed"],
    "completed":    [],
    "failed":       [],
}


def validate_workflow_transition(old_stage, new_stage):
    """Return True if a TestWorkflow stage transition is valid."""
    return new_stage in WORKFLOW_TRANSITIONS.get(old_stage, [])


def elapsed_ms(start, end=None) -> int:
    """Milliseconds between two datetimes; naive values are read as UTC."""
    if start is None:
        return 0
    end = end or datetime.now(timezone.utc)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return max(0, int((end - start).total_seconds() * 1000))


class TestWorkflow(db.Model):
    """One scheduled test moving through the QA pipeline."""

    __tablename__ = "test_workflows"
    __test__ = False  # not a pytest class

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(200), nullable=False, index=True)
    epic_id = db.Column(db.String(100), nullable=False, index=True)
    test_type = db.Column(db.String(20), nullable=False)
    test_definition_json = db.Column(db.Text, nullable=True)

    current_stage = db.Column(db.String(20), nullable=False, default="pending")
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    # Escalation
    escalated = db.Column(db.Boolean, nullable=False, default=False)
    error_kind = db.Column(db.String(30), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    handoff_path = db.Column(db.String(1000), nullable=True)
    handoff_summary = db.Column(db.Text, nullable=True)

    # Stage results
    execution_result_json = db.Column(db.Text, nullable=True)
    detection_result_json = db.Column(db.Text, nullable=True)
    verification_result_json = db.Column(db.Text, nullable=True)
    fixing_result_json = db.Column(db.Text, nullable=True)
    learning_result_json = db.Column(db.Text, nullable=True)
    stage_history_json = db.Column(db.Text, nullable=True)

    # Timing
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stage_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "current_stage IN ('pending','execution','detection','verification',"
            "'fixing','learning','completed','failed')",
            name="ck_workflow_stage",
        ),
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','failed')",
            name="ck_workflow_status",
        ),
        db.CheckConstraint("retry_count >= 0 AND retry_count <= 3", name="ck_workflow_retry_cap"),
    )

    @validates("current_stage", "status")
    def _lock_terminal(self, key, value):
        if self.status in TERMINAL_STAGES and value != getattr(self, key):
            raise InvalidTransitionError(self.current_stage, value)
        return value

    @validates("retry_count")
    def _monotonic_retry(self, key, value):
        if self.retry_count is not None and value < self.retry_count:
            raise InvalidTransitionError(f"retry_count={self.retry_count}", f"retry_count={value}")
        return value

    # ── State machine ────────────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES

    def transition_to(self, stage: str, note: str | None = None):
        """Move to ``stage`` along a legal edge and stamp the history."""
        if not validate_workflow_transition(self.current_stage, stage):
            raise InvalidTransitionError(self.current_stage, stage)
        now = utcnow()
        self.current_stage = stage
        if stage in TERMINAL_STAGES:
            self.status = stage
            self.completed_at = now
            self.duration_ms = elapsed_ms(self.started_at or self.created_at, now)
        else:
            if self.started_at is None:
                self.started_at = now
            self.status = "in_progress"
        self.stage_started_at = now
        self.record_history(stage, note)

    def record_history(self, stage: str, note: str | None = None):
        history = self.stage_history
        entry = {"stage": stage, "at": utcnow().isoformat()}
        if note:
            entry["note"] = note
        history.append(entry)
        self.stage_history_json = json.dumps(history)

    @property
    def stage_history(self) -> list:
        return json.loads(self.stage_history_json) if self.stage_history_json else []

    # ── Stage results ────────────────────────────────────────────────────

    def get_result(self, stage: str) -> dict | None:
        raw = getattr(self, f"{stage}_result_json")
        return json.loads(raw) if raw else None

    def set_result(self, stage: str, result: dict | None):
        setattr(self, f"{stage}_result_json", json.dumps(result, default=str) if result is not None else None)

    @property
    def test_definition(self) -> dict:
        return json.loads(self.test_definition_json) if self.test_definition_json else {}

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "epic_id": self.epic_id,
            "test_type": self.test_type,
            "test_definition": self.test_definition,
            "current_stage": self.current_stage,
            "status": self.status,
            "retry_count": self.retry_count,
            "escalated": bool(self.escalated),
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "handoff_path": self.handoff_path,
            "handoff_summary": self.handoff_summary,
            "results": {stage: self.get_result(stage) for stage in RESULT_STAGES},
            "stage_history": self.stage_history,
            "started_at": iso(self.started_at),
            "stage_started_at": iso(self.stage_started_at),
            "completed_at": iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<TestWorkflow id={self.id} test={self.test_id} {self.current_stage}/{self.status}>"
