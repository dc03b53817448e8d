"""
Verification Service — one immutable VerificationReport per verification.
"""

import json
import logging

from sqlalchemy import select

from qa_pipeline.core.exceptions import NotFoundError
from qa_pipeline.models import db
from qa_pipeline.models.verification import VerificationReport
from qa_pipeline.services import evidence_service, red_flag_service
from qa_pipeline.verification.verifier import IndependentVerifier

logger = logging.getLogger(__name__)


def save_report(result: dict, workflow_id: int | None = None) -> VerificationReport:
    report = VerificationReport(
        test_id=result["test_id"],
        epic_id=result["epic_id"],
        evidence_id=result.get("evidence_id"),
        workflow_id=workflow_id,
        verified=result["verified"],
        confidence_score=result["confidence_score"],
        recommendation=result["recommendation"],
        evidence_reviewed_json=json.dumps(result.get("evidence_reviewed") or {}, default=str),
        cross_validation_json=json.dumps(result.get("cross_validation_results") or [], default=str),
        red_flags_json=json.dumps(result.get("red_flags_found") or {}, default=str),
        integrity_json=json.dumps(result.get("integrity") or {}, default=str),
        skeptical_json=json.dumps(result.get("skeptical") or {}, default=str),
        confidence_breakdown_json=json.dumps(result.get("confidence_breakdown") or {}, default=str),
        concerns_json=json.dumps(result.get("concerns") or []),
        summary=result.get("summary") or "",
        reasoning=result.get("reasoning") or "",
        verifier_model=result.get("verifier_model"),
    )
    db.session.add(report)
    db.session.flush()
    logger.info(
        "Verification report %d: %s (%.1f)", report.id, report.recommendation, report.confidence_score,
        extra={"test_id": report.test_id, "epic_id": report.epic_id, "workflow_id": workflow_id},
    )
    return report


def verify_evidence(evidence_id: int, verifier: IndependentVerifier,
                    workflow_id: int | None = None) -> VerificationReport:
    """Verify a stored evidence row against its recorded flags and persist the report."""
    evidence = evidence_service.get_evidence(evidence_id)
    flags = red_flag_service.flags_for_verification(evidence.test_id, evidence.epic_id, evidence)
    history = evidence_service.duration_history(evidence.test_name, exclude_id=evidence.id)
    result = verifier.verify(evidence.to_dict(), flags, history)
    return save_report(result, workflow_id=workflow_id)


def get_report(report_id: int) -> VerificationReport:
    report = db.session.get(VerificationReport, report_id)
    if not report:
        raise NotFoundError(resource="VerificationReport", resource_id=report_id)
    return report


def list_reports(*, test_id: str | None = None, epic_id: str | None = None,
                 workflow_id: int | None = None) -> list[VerificationReport]:
    stmt = select(VerificationReport).order_by(VerificationReport.id)
    if test_id:
        stmt = stmt.where(VerificationReport.test_id == test_id)
    if epic_id:
        stmt = stmt.where(VerificationReport.epic_id == epic_id)
    if workflow_id is not None:
        stmt = stmt.where(VerificationReport.workflow_id == workflow_id)
    return list(db.session.execute(stmt).scalars())
