"""
QA Verification Pipeline
Verification report model.

One immutable row per verification attempt. Re-verifying a test writes a
new row; existing rows are never updated.
"""

import json

from qa_pipeline.models import db, iso, utcnow

RECOMMENDATIONS = ("accept", "reject", "manual_review")


class VerificationReport(db.Model):
    __tablename__ = "verification_reports"

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.String(200), nullable=False, index=True)
    epic_id = db.Column(db.String(100), nullable=False, index=True)
    evidence_id = db.Column(
        db.Integer,
        db.ForeignKey("evidence_artifacts.id", ondelete="SET NULL"),
        nullable=True,
    )
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("test_workflows.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    verified = db.Column(db.Boolean, nullable=False, default=False)
    confidence_score = db.Column(db.Float, nullable=False, default=0.0)
    recommendation = db.Column(db.String(20), nullable=False)

    evidence_reviewed_json = db.Column(db.Text, nullable=True)
    cross_validation_json = db.Column(db.Text, nullable=True)
    red_flags_json = db.Column(db.Text, nullable=True)
    integrity_json = db.Column(db.Text, nullable=True)
    skeptical_json = db.Column(db.Text, nullable=True)
    confidence_breakdown_json = db.Column(db.Text, nullable=True)
    concerns_json = db.Column(db.Text, nullable=True)

    summary = db.Column(db.Text, nullable=False, default="")
    reasoning = db.Column(db.Text, nullable=False, default="")
    verifier_model = db.Column(db.String(80), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "recommendation IN ('accept','reject','manual_review')",
            name="ck_verification_recommendation",
        ),
        db.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 100",
            name="ck_verification_confidence_range",
        ),
    )

    @staticmethod
    def _load(raw, default):
        return json.loads(raw) if raw else default

    def to_dict(self):
        return {
            "id": self.id,
            "test_id": self.test_id,
            "epic_id": self.epic_id,
            "evidence_id": self.evidence_id,
            "workflow_id": self.workflow_id,
            "verified": bool(self.verified),
            "confidence_score": self.confidence_score,
            "recommendation": self.recommendation,
            "evidence_reviewed": self._load(self.evidence_reviewed_json, {}),
            "cross_validation_results": self._load(self.cross_validation_json, []),
            "red_flags_found": self._load(self.red_flags_json, []),
            "integrity": self._load(self.integrity_json, {}),
            "skeptical": self._load(self.skeptical_json, {}),
            "confidence_breakdown": self._load(self.confidence_breakdown_json, {}),
            "concerns": self._load(self.concerns_json, []),
            "summary": self.summary,
            "reasoning": self.reasoning,
            "verifier_model": self.verifier_model,
            "verified_at": iso(self.verified_at),
        }

    def __repr__(self):
        return (
            f"<VerificationReport id={self.id} test={self.test_id} "
            f"{self.recommendation} {self.confidence_score:.1f}>"
        )
