"""
Evidence Service — ingestion and retrieval of evidence artifacts.

Business logic for:
    - Recording a new evidence row (producer side: ingestion API or executor result)
    - Attaching artifact paths to an existing row (write-once per path)
    - Latest evidence by (test_id, epic_id): the retrieval interface the
      detector and verifier consume
    - Historical durations per test name for timing comparisons

All functions flush; the caller commits.
"""

import json
import logging

from sqlalchemy import select

from qa_pipeline.core.exceptions import NotFoundError, ValidationError
from qa_pipeline.models import db
from qa_pipeline.models.evidence import ARTIFACT_FIELDS, PASS_FAIL_VALUES, TEST_TYPES, EvidenceArtifact

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "test_name", "expected_outcome", "actual_outcome", "pass_fail",
    "duration_ms", "error_message", "stack_trace",
)
HISTORY_LIMIT = 20


def _validate(data: dict) -> None:
    missing = [f for f in ("epic_id", "test_id", "test_type") if not data.get(f)]
    if missing:
        raise ValidationError("Missing required fields", {"missing": missing})
    if data["test_type"] not in TEST_TYPES:
        raise ValidationError(
            f"Invalid test_type '{data['test_type']}'", {"allowed": list(TEST_TYPES)}
        )
    pass_fail = data.get("pass_fail", "pending")
    if pass_fail not in PASS_FAIL_VALUES:
        raise ValidationError(f"Invalid pass_fail '{pass_fail}'", {"allowed": list(PASS_FAIL_VALUES)})
    duration = data.get("duration_ms")
    if duration is not None and (not isinstance(duration, int) or isinstance(duration, bool) or duration < 0):
        raise ValidationError("duration_ms must be a non-negative integer")
    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")


def record_evidence(data: dict) -> EvidenceArtifact:
    """Create one evidence row from a producer payload."""
    _validate(data)
    evidence = EvidenceArtifact(
        epic_id=data["epic_id"],
        test_id=data["test_id"],
        test_type=data["test_type"],
        test_name=data.get("test_name") or data["test_id"],
        pass_fail=data.get("pass_fail", "pending"),
        metadata_json=json.dumps(data["metadata"]) if data.get("metadata") else None,
    )
    for field in _SCALAR_FIELDS:
        if field in data and field not in ("test_name", "pass_fail"):
            setattr(evidence, field, data[field])
    for field in ARTIFACT_FIELDS:
        if data.get(field):
            setattr(evidence, field, data[field])

    db.session.add(evidence)
    db.session.flush()
    logger.info(
        "Evidence recorded id=%s test=%s pass_fail=%s artifacts=%d",
        evidence.id, evidence.test_id, evidence.pass_fail, len(evidence.artifact_paths()),
        extra={"test_id": evidence.test_id, "epic_id": evidence.epic_id},
    )
    return evidence


def attach_artifacts(evidence_id: int, paths: dict) -> EvidenceArtifact:
    """Add artifact paths. Rewriting an already-populated path raises ConflictError."""
    unknown = sorted(set(paths) - set(ARTIFACT_FIELDS))
    if unknown:
        raise ValidationError("Unknown artifact fields", {"unknown": unknown})
    evidence = get_evidence(evidence_id)
    for field, path in paths.items():
        if path:
            setattr(evidence, field, path)
    db.session.flush()
    return evidence


def get_evidence(evidence_id: int) -> EvidenceArtifact:
    evidence = db.session.get(EvidenceArtifact, evidence_id)
    if not evidence:
        raise NotFoundError(resource="EvidenceArtifact", resource_id=evidence_id)
    return evidence


def latest_evidence(test_id: str, epic_id: str) -> EvidenceArtifact | None:
    return db.session.execute(
        select(EvidenceArtifact)
        .where(EvidenceArtifact.test_id == test_id, EvidenceArtifact.epic_id == epic_id)
        .order_by(EvidenceArtifact.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_evidence(test_id: str | None = None, epic_id: str | None = None) -> list[EvidenceArtifact]:
    stmt = select(EvidenceArtifact).order_by(EvidenceArtifact.id.desc())
    if test_id:
        stmt = stmt.where(EvidenceArtifact.test_id == test_id)
    if epic_id:
        stmt = stmt.where(EvidenceArtifact.epic_id == epic_id)
    return list(db.session.execute(stmt).scalars())


def duration_history(test_name: str, *, exclude_id: int | None = None,
                     limit: int = HISTORY_LIMIT) -> list[int]:
    """Recent recorded durations for ``test_name``, newest first."""
    stmt = (
        select(EvidenceArtifact.duration_ms)
        .where(EvidenceArtifact.test_name == test_name, EvidenceArtifact.duration_ms.is_not(None))
        .order_by(EvidenceArtifact.id.desc())
        .limit(limit)
    )
    if exclude_id is not None:
        stmt = stmt.where(EvidenceArtifact.id != exclude_id)
    return [row for row in db.session.execute(stmt).scalars()]
