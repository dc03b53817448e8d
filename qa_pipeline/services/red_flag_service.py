"""
Red Flag Service — append-only persistence of detector output.

Re-running detection on the same evidence does not duplicate rows: a flag
with the same type, severity and description already recorded against the
evidence is skipped.
"""

import json
import logging

from sqlalchemy import select

from qa_pipeline.core.exceptions import NotFoundError, ValidationError
from qa_pipeline.models import db
from qa_pipeline.models.evidence import EvidenceArtifact
from qa_pipeline.models.red_flags import SEVERITIES, SEVERITY_RANK, RedFlag
from qa_pipeline.red_flags.detector import RedFlagDetector
from qa_pipeline.services import evidence_service

logger = logging.getLogger(__name__)


def record_flags(
    flags: list[dict],
    *,
    test_id: str,
    epic_id: str,
    evidence: EvidenceArtifact | None = None,
) -> list[RedFlag]:
    evidence_id = evidence.id if evidence is not None else None
    existing = {
        (f.flag_type, f.severity, f.description)
        for f in _query(test_id=test_id, epic_id=epic_id, evidence_id=evidence_id)
    }
    rows = []
    for flag in flags:
        key = (flag["flag_type"], flag["severity"], flag["description"])
        if key in existing:
            continue
        existing.add(key)
        row = RedFlag(
            epic_id=epic_id,
            test_id=test_id,
            evidence_id=evidence_id,
            flag_type=flag["flag_type"],
            severity=flag["severity"],
            description=flag["description"],
            proof_json=json.dumps(flag.get("proof") or {}, default=str),
        )
        db.session.add(row)
        rows.append(row)
    db.session.flush()
    if rows:
        logger.warning(
            "%d red flag(s) recorded for %s", len(rows), test_id,
            extra={"test_id": test_id, "epic_id": epic_id},
        )
    return rows


def detect_and_record(evidence_id: int, detector: RedFlagDetector) -> list[RedFlag]:
    """Run the detector on one evidence row and append its flags."""
    evidence = evidence_service.get_evidence(evidence_id)
    history = evidence_service.duration_history(evidence.test_name, exclude_id=evidence.id)
    flags = detector.detect(evidence.to_dict(), history)
    record_flags(flags, test_id=evidence.test_id, epic_id=evidence.epic_id, evidence=evidence)
    return _query(test_id=evidence.test_id, epic_id=evidence.epic_id, evidence_id=evidence.id)


def _query(*, test_id=None, epic_id=None, evidence_id=None, severity=None, resolved=None) -> list[RedFlag]:
    stmt = select(RedFlag).order_by(RedFlag.id)
    if test_id:
        stmt = stmt.where(RedFlag.test_id == test_id)
    if epic_id:
        stmt = stmt.where(RedFlag.epic_id == epic_id)
    if evidence_id is not None:
        stmt = stmt.where(RedFlag.evidence_id == evidence_id)
    if severity:
        stmt = stmt.where(RedFlag.severity == severity)
    if resolved is not None:
        stmt = stmt.where(RedFlag.resolved.is_(resolved))
    return list(db.session.execute(stmt).scalars())


def list_flags(*, test_id=None, epic_id=None, evidence_id=None, severity=None, resolved=None) -> list[RedFlag]:
    if severity and severity not in SEVERITIES:
        raise ValidationError(f"Invalid severity '{severity}'", {"allowed": list(SEVERITIES)})
    flags = _query(test_id=test_id, epic_id=epic_id, evidence_id=evidence_id,
                   severity=severity, resolved=resolved)
    return sorted(flags, key=lambda f: (SEVERITY_RANK[f.severity], f.id))


def flags_for_verification(test_id: str, epic_id: str, evidence: EvidenceArtifact | None) -> list[dict]:
    """Flags recorded against ``evidence`` (or the no-evidence flags when it is None)."""
    if evidence is not None:
        rows = _query(test_id=test_id, epic_id=epic_id, evidence_id=evidence.id)
    else:
        rows = [
            f for f in _query(test_id=test_id, epic_id=epic_id)
            if f.evidence_id is None
        ]
    return [f.to_dict() for f in rows]


def resolve_flag(flag_id: int, notes: str) -> RedFlag:
    if not notes or not notes.strip():
        raise ValidationError("resolution_notes is required")
    flag = db.session.get(RedFlag, flag_id)
    if not flag:
        raise NotFoundError(resource="RedFlag", resource_id=flag_id)
    flag.resolve(notes.strip())
    db.session.flush()
    logger.info("Red flag %d resolved", flag_id, extra={"test_id": flag.test_id})
    return flag
