"""
QA Verification Pipeline
Fix attempt & fix learning models.

Models:
    - FixAttempt: one row per automated fix attempt, numbered 1..3 per workflow
    - FixLearning: reusable fix keyed by a normalized failure signature
"""

from qa_pipeline.models import db, iso, utcnow

MAX_FIX_ATTEMPTS = 3
FIX_OUTCOMES = ("success", "failure")


def make_pattern_signature(test_type: str, flag_types, classification: str) -> str:
    """Normalize ``(test_type, flag_types, classification)`` into one key.

    Flag types are de-duplicated and sorted so the order flags were detected
    in never produces a different signature.
    """
    flags = ",".join(sorted({f for f in (flag_types or []) if f}))
    return f"{(test_type or '').lower()}|{flags}|{(classification or '').lower()}"


class FixAttempt(db.Model):
    """Automated fix attempt (bounded at MAX_FIX_ATTEMPTS per workflow)."""

    __tablename__ = "fix_attempts"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("test_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    test_id = db.Column(db.String(200), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False)

    # Root-cause analysis
    root_cause = db.Column(db.Text, nullable=False, default="")
    classification = db.Column(db.String(20), nullable=False)
    complexity = db.Column(db.String(20), nullable=False, default="moderate")

    # Model routing
    model_tier = db.Column(db.String(20), nullable=False)
    model = db.Column(db.String(80), nullable=True)

    strategy = db.Column(db.String(50), nullable=False)
    reused_learning = db.Column(db.Boolean, default=False, nullable=False)
    outcome = db.Column(db.String(10), nullable=False, default="failure")
    changes_made = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    verification_passed = db.Column(db.Boolean, nullable=True)
    cost = db.Column(db.Float, default=0.0, nullable=False)
    attempted_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "attempt_number", name="uq_fix_attempt_number"),
        db.CheckConstraint(
            f"attempt_number >= 1 AND attempt_number <= {MAX_FIX_ATTEMPTS}",
            name="ck_fix_attempt_bounds",
        ),
        db.CheckConstraint("outcome IN ('success','failure')", name="ck_fix_attempt_outcome"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "test_id": self.test_id,
            "attempt_number": self.attempt_number,
            "root_cause": self.root_cause,
            "classification": self.classification,
            "complexity": self.complexity,
            "model_tier": self.model_tier,
            "model": self.model,
            "strategy": self.strategy,
            "reused_learning": bool(self.reused_learning),
            "outcome": self.outcome,
            "changes_made": self.changes_made,
            "error_message": self.error_message,
            "verification_passed": self.verification_passed,
            "cost": round(self.cost or 0.0, 6),
            "attempted_at": iso(self.attempted_at),
        }

    def __repr__(self):
        return (
            f"<FixAttempt wf={self.workflow_id} #{self.attempt_number} "
            f"{self.strategy} {self.outcome}>"
        )


class FixLearning(db.Model):
    """Fix strategy that previously resolved a failure signature.

    ``reuse_count`` only grows; writes go through the atomic upsert in
    ``qa_pipeline.rca.learning_store``.
    """

    __tablename__ = "fix_learnings"

    id = db.Column(db.Integer, primary_key=True)
    pattern_signature = db.Column(db.String(400), nullable=False, unique=True)
    test_type = db.Column(db.String(20), nullable=False)
    flag_types = db.Column(db.String(200), nullable=False, default="")
    classification = db.Column(db.String(20), nullable=False)
    successful_strategy = db.Column(db.String(50), nullable=False)
    error_pattern = db.Column(db.Text, nullable=True)
    reuse_count = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "pattern_signature": self.pattern_signature,
            "test_type": self.test_type,
            "flag_types": [f for f in (self.flag_types or "").split(",") if f],
            "classification": self.classification,
            "successful_strategy": self.successful_strategy,
            "error_pattern": self.error_pattern,
            "reuse_count": self.reuse_count,
            "created_at": iso(self.created_at),
            "last_used_at": iso(self.last_used_at),
        }

    def __repr__(self):
        return f"<FixLearning {self.pattern_signature} -> {self.successful_strategy} x{self.reuse_count}>"
