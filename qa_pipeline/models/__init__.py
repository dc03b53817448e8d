"""
QA Verification Pipeline
Domain models.

Five logical tables, linked by ``test_id`` / ``epic_id``:
    - evidence_artifacts (evidence.EvidenceArtifact)
    - red_flags (red_flags.RedFlag)
    - verification_reports (verification.VerificationReport)
    - fix_attempts / fix_learnings (fixing.FixAttempt, fixing.FixLearning)
    - test_workflows (workflow.TestWorkflow)
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc)


def iso(value):
    """Serialize an optional datetime."""
    return value.isoformat() if value else None
