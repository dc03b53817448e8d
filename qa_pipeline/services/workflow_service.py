"""
Workflow Service — test workflow rows and their fix attempts.

The orchestrator owns stage transitions; this module only creates, reads
and appends.
"""

import json
import logging

from sqlalchemy import select

from qa_pipeline.core.exceptions import NotFoundError, ValidationError
from qa_pipeline.models import db
from qa_pipeline.models.evidence import TEST_TYPES
from qa_pipeline.models.fixing import FixAttempt
from qa_pipeline.models.workflow import STATUSES, TestWorkflow

logger = logging.getLogger(__name__)


def create_workflow(test_id: str, epic_id: str, test_type: str,
                    test_definition: dict | None = None) -> TestWorkflow:
    if not test_id or not epic_id:
        raise ValidationError("test_id and epic_id are required")
    if test_type not in TEST_TYPES:
        raise ValidationError(f"Invalid test_type '{test_type}'", {"allowed": list(TEST_TYPES)})
    if test_definition is not None and not isinstance(test_definition, dict):
        raise ValidationError("test_definition must be an object")

    wf = TestWorkflow(
        test_id=test_id,
        epic_id=epic_id,
        test_type=test_type,
        test_definition_json=json.dumps(test_definition) if test_definition else None,
        current_stage="pending",
        status="pending",
        retry_count=0,
    )
    wf.record_history("pending")
    db.session.add(wf)
    db.session.flush()
    logger.info("Workflow %d created for %s", wf.id, test_id,
                extra={"workflow_id": wf.id, "test_id": test_id, "epic_id": epic_id})
    return wf


def get_workflow(workflow_id: int) -> TestWorkflow:
    wf = db.session.get(TestWorkflow, workflow_id)
    if not wf:
        raise NotFoundError(resource="TestWorkflow", resource_id=workflow_id)
    return wf


def list_workflows(*, epic_id: str | None = None, status: str | None = None) -> list[TestWorkflow]:
    if status and status not in STATUSES:
        raise ValidationError(f"Invalid status '{status}'", {"allowed": list(STATUSES)})
    stmt = select(TestWorkflow).order_by(TestWorkflow.id)
    if epic_id:
        stmt = stmt.where(TestWorkflow.epic_id == epic_id)
    if status:
        stmt = stmt.where(TestWorkflow.status == status)
    return list(db.session.execute(stmt).scalars())


def workflows_by_epic(epic_id: str) -> list[TestWorkflow]:
    return list_workflows(epic_id=epic_id)


def in_progress_workflows() -> list[TestWorkflow]:
    return list_workflows(status="in_progress")


# ── Fix attempts ─────────────────────────────────────────────────────────


def fix_attempts(workflow_id: int) -> list[FixAttempt]:
    return list(db.session.execute(
        select(FixAttempt)
        .where(FixAttempt.workflow_id == workflow_id)
        .order_by(FixAttempt.attempt_number)
    ).scalars())


def record_fix_attempt(wf: TestWorkflow, plan: dict, outcome: dict) -> FixAttempt:
    rca = plan["rca"]
    attempt = FixAttempt(
        workflow_id=wf.id,
        test_id=wf.test_id,
        attempt_number=plan["attempt_number"],
        root_cause=rca["root_cause"],
        classification=rca["category"],
        complexity=rca["complexity"],
        model_tier=plan["tier"],
        model=outcome.get("model"),
        strategy=plan["strategy"],
        reused_learning=plan["reused_learning"],
        outcome="failure",
        changes_made=outcome.get("changes_made") or None,
        error_message=outcome.get("error"),
        verification_passed=None if outcome.get("applied") else False,
        cost=outcome.get("cost") or 0.0,
    )
    db.session.add(attempt)
    db.session.flush()
    return attempt


def settle_latest_attempt(workflow_id: int, accepted: bool) -> FixAttempt | None:
    """Record the verification verdict on the most recent applied, unverified attempt."""
    pending = [a for a in fix_attempts(workflow_id) if a.verification_passed is None]
    if not pending:
        return None
    attempt = pending[-1]
    attempt.verification_passed = accepted
    attempt.outcome = "success" if accepted else "failure"
    db.session.flush()
    return attempt
