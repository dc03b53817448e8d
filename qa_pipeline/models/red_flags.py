"""
QA Verification Pipeline
Red flag model.

Append-only audit record of a deception signal. A flag can be resolved
exactly once; its type and severity are fixed when it is detected.
"""

import json

from sqlalchemy.orm import validates

from qa_pipeline.core.exceptions import ConflictError
from qa_pipeline.models import db, iso, utcnow

FLAG_TYPES = ("missing_evidence", "inconsistent", "tool_execution", "timing", "coverage")
SEVERITIES = ("critical", "high", "medium", "low")
SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}


class RedFlag(db.Model):
    """Severity-tagged signal that a reported result may be fabricated."""

    __tablename__ = "red_flags"

    id = db.Column(db.Integer, primary_key=True)
    epic_id = db.Column(db.String(100), nullable=False, index=True)
    test_id = db.Column(db.String(200), nullable=False, index=True)
    evidence_id = db.Column(
        db.Integer,
        db.ForeignKey("evidence_artifacts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    flag_type = db.Column(db.String(30), nullable=False)
    severity = db.Column(db.String(10), nullable=False)
    description = db.Column(db.Text, nullable=False)
    proof_json = db.Column(db.Text, nullable=True)
    detected_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    resolved = db.Column(db.Boolean, default=False, nullable=False)
    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "flag_type IN ('missing_evidence','inconsistent','tool_execution','timing','coverage')",
            name="ck_red_flag_type",
        ),
        db.CheckConstraint(
            "severity IN ('critical','high','medium','low')",
            name="ck_red_flag_severity",
        ),
    )

    @validates("severity", "flag_type")
    def _lock_classification(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ConflictError("RedFlag", key, value)
        return value

    def resolve(self, notes: str):
        if self.resolved:
            raise ConflictError("RedFlag", "resolved", "true")
        self.resolved = True
        self.resolution_notes = notes
        self.resolved_at = utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "epic_id": self.epic_id,
            "test_id": self.test_id,
            "evidence_id": self.evidence_id,
            "flag_type": self.flag_type,
            "severity": self.severity,
            "description": self.description,
            "proof": json.loads(self.proof_json) if self.proof_json else {},
            "detected_at": iso(self.detected_at),
            "resolved": bool(self.resolved),
            "resolution_notes": self.resolution_notes,
            "resolved_at": iso(self.resolved_at),
        }

    def __repr__(self):
        return f"<RedFlag id={self.id} {self.severity}:{self.flag_type} test={self.test_id}>"
