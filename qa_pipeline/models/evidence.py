"""
QA Verification Pipeline
Evidence artifact model.

One row per executed test: the executor's claimed outcome plus paths to the
files captured while it ran. Paths are relative to ``EVIDENCE_ROOT`` unless
absolute. Once a path is written it can never be replaced, and once every
artifact required for the test type is present the outcome fields freeze.
"""

import json

from sqlalchemy.orm import validates

from qa_pipeline.config import REQUIRED_ARTIFACTS
from qa_pipeline.core.exceptions import ConflictError
from qa_pipeline.models import db, iso, utcnow

TEST_TYPES = ("ui", "api", "unit", "integration")
PASS_FAIL_VALUES = ("pass", "fail", "pending")

# Capture order: anything earlier in this tuple must not be newer on disk
# than anything later.
ARTIFACT_FIELDS = (
    "screenshot_before",
    "dom_snapshot_before",
    "http_request",
    "network_trace",
    "console_logs",
    "http_response",
    "dom_snapshot",
    "screenshot_after",
    "coverage_report",
)

_OUTCOME_FIELDS = ("pass_fail", "actual_outcome", "duration_ms")


class EvidenceArtifact(db.Model):
    """Captured proof that a test actually ran."""

    __tablename__ = "evidence_artifacts"

    id = db.Column(db.Integer, primary_key=True)
    epic_id = db.Column(db.String(100), nullable=False, index=True)
    test_id = db.Column(db.String(200), nullable=False, index=True)
    test_type = db.Column(db.String(20), nullable=False)
    test_name = db.Column(db.String(500), nullable=False)
    expected_outcome = db.Column(db.Text, nullable=True)
    actual_outcome = db.Column(db.Text, nullable=True)
    pass_fail = db.Column(db.String(10), nullable=False, default="pending")

    # Artifact paths
    screenshot_before = db.Column(db.String(1000), nullable=True)
    screenshot_after = db.Column(db.String(1000), nullable=True)
    dom_snapshot_before = db.Column(db.String(1000), nullable=True)
    dom_snapshot = db.Column(db.String(1000), nullable=True)
    console_logs = db.Column(db.String(1000), nullable=True)
    network_trace = db.Column(db.String(1000), nullable=True)
    http_request = db.Column(db.String(1000), nullable=True)
    http_response = db.Column(db.String(1000), nullable=True)
    coverage_report = db.Column(db.String(1000), nullable=True)

    # Producer hints: tool calls, expected tools/requests/elements,
    # screenshot analysis, coverage baseline.
    metadata_json = db.Column(db.Text, nullable=True)

    duration_ms = db.Column(db.Integer, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    stack_trace = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "test_type IN ('ui','api','unit','integration')",
            name="ck_evidence_test_type",
        ),
        db.CheckConstraint(
            "pass_fail IN ('pass','fail','pending')",
            name="ck_evidence_pass_fail",
        ),
        db.Index("ix_evidence_test_epic", "test_id", "epic_id"),
    )

    @validates(*ARTIFACT_FIELDS)
    def _lock_artifact_path(self, key, value):
        current = getattr(self, key)
        if current and value != current:
            raise ConflictError("EvidenceArtifact", key, value)
        return value

    @validates(*_OUTCOME_FIELDS)
    def _lock_outcome(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current and self.is_sealed:
            raise ConflictError("EvidenceArtifact", key, value)
        return value

    @property
    def is_sealed(self) -> bool:
        """True once every artifact required for the test type is recorded."""
        required = REQUIRED_ARTIFACTS.get(self.test_type or "", ())
        return bool(required) and all(getattr(self, f) for f in required)

    def get_metadata(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}

    def artifact_paths(self) -> dict:
        """Populated artifact paths keyed by field name."""
        return {f: getattr(self, f) for f in ARTIFACT_FIELDS if getattr(self, f)}

    def to_dict(self):
        d = {
            "id": self.id,
            "epic_id": self.epic_id,
            "test_id": self.test_id,
            "test_type": self.test_type,
            "test_name": self.test_name,
            "expected_outcome": self.expected_outcome,
            "actual_outcome": self.actual_outcome,
            "pass_fail": self.pass_fail,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "stack_trace": self.stack_trace,
            "metadata": self.get_metadata(),
            "timestamp": iso(self.timestamp),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        for field in ARTIFACT_FIELDS:
            d[field] = getattr(self, field)
        return d

    def __repr__(self):
        return f"<EvidenceArtifact id={self.id} test={self.test_id} {self.pass_fail}>"
