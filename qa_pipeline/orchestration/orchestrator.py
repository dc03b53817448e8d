"""
QA Verification Pipeline
Test workflow orchestrator.

Drives one TestWorkflow row through

    pending → execution → detection → verification → (fixing → verification)*
            → learning → completed | failed

Threading model:
    - workflow thread: owns the DB session; runs the stage loop and commits
      after every stage. Workflows run on the bounded WorkflowPool.
    - stage thread: external calls and pure analysis (executor dispatch,
      red-flag detection, verification, fix generation). Bounded by the
      per-stage ceiling; never touches the database.

Failure handling:
    StageTimeoutError       → failed, error_kind="timeout"
    ExhaustedRetriesError   → failed, error_kind="exhausted_retries"
    ConfigurationError      → failed, error_kind="configuration"
    anything else           → failed, error_kind="load_error"
    WorkflowCancelledError  → partial state kept, row stays in_progress

Every failure escalates: ``escalated=True`` plus a handoff summary and a
markdown handoff document.

Stage handlers only act when the row's ``current_stage`` equals their
stage, so re-invoking one after a crash is a no-op. ``resume_in_progress``
restarts each ``in_progress`` row from its recorded stage.
"""

import logging
import threading
from concurrent.futures import wait

from flask import Flask

from qa_pipeline.ai.gateway import ModelGateway
from qa_pipeline.core.exceptions import (
    ConfigurationError,
    ExhaustedRetriesError,
    StageTimeoutError,
    WorkflowCancelledError,
)
from qa_pipeline.models import db
from qa_pipeline.models.workflow import TestWorkflow, elapsed_ms
from qa_pipeline.orchestration import reporter
from qa_pipeline.orchestration.escalation import EscalationHandler, escalation_reason
from qa_pipeline.orchestration.executors import TestExecutor, build_executor
from qa_pipeline.orchestration.stage_executor import StageExecutor
from qa_pipeline.orchestration.worker_pool import WorkflowPool
from qa_pipeline.rca.fix_applier import FixApplier
from qa_pipeline.rca.fix_engine import RCAFixEngine
from qa_pipeline.rca.learning_store import FixLearningStore
from qa_pipeline.red_flags.detector import RedFlagDetector, summarize
from qa_pipeline.services import evidence_service, red_flag_service, verification_service, workflow_service
from qa_pipeline.verification.artifacts import ArtifactStore
from qa_pipeline.verification.verifier import IndependentVerifier

logger = logging.getLogger(__name__)


class TestWorkflowOrchestrator:
    """Runs test workflows end-to-end inside one Flask app."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        app: Flask,
        *,
        executor: TestExecutor | None = None,
        gateway: ModelGateway | None = None,
        fix_applier: FixApplier | None = None,
        store: ArtifactStore | None = None,
        stage_timeouts: dict | None = None,
        max_fix_attempts: int | None = None,
        handoff_dir: str | None = None,
    ):
        cfg = app.config
        self.app = app
        self.store = store or ArtifactStore(cfg["EVIDENCE_ROOT"])
        self.gateway = gateway or ModelGateway(provider=cfg["LLM_PROVIDER"])

        # Tier collision raises ConfigurationError here, before any evidence is read.
        self.verifier = IndependentVerifier(
            self.store,
            verifier_tier=cfg["VERIFIER_TIER"],
            executor_tier=cfg["EXECUTOR_TIER"],
            selector=self.gateway.selector,
            required_artifacts=cfg["QA_REQUIRED_ARTIFACTS"],
            timing_floors=cfg["QA_TIMING_FLOORS_MS"],
            weights=cfg["QA_CONFIDENCE_WEIGHTS"],
            multipliers=cfg["QA_SEVERITY_MULTIPLIERS"],
            thresholds=cfg["QA_RECOMMENDATION_THRESHOLDS"],
        )
        self.detector = RedFlagDetector(
            self.store,
            required_artifacts=cfg["QA_REQUIRED_ARTIFACTS"],
            timing_floors=cfg["QA_TIMING_FLOORS_MS"],
        )
        self.executor = executor or build_executor(cfg)
        self.learning_store = FixLearningStore()
        self.fix_engine = RCAFixEngine(
            self.gateway,
            applier=fix_applier,
            learning_store=self.learning_store,
            max_attempts=max_fix_attempts or cfg["FIX_MAX_ATTEMPTS"],
        )
        self.max_fix_attempts = self.fix_engine.max_attempts
        self.escalation = EscalationHandler(handoff_dir or cfg["HANDOFF_DIR"])
        self.stage_timeouts = dict(cfg["STAGE_TIMEOUTS"])
        if stage_timeouts:
            self.stage_timeouts.update(stage_timeouts)

        self._shutdown = threading.Event()
        self.stage_executor = StageExecutor(self._shutdown)
        self.pool = WorkflowPool(app, max_workers=cfg["WORKFLOW_MAX_WORKERS"])

        self._handlers = {
            "pending": self._stage_pending,
            "execution": self._stage_execution,
            "detection": self._stage_detection,
            "verification": self._stage_verification,
            "fixing": self._stage_fixing,
            "learning": self._stage_learning,
        }

    # ═════════════════════════════════════════════════════════════════════
    # Public API
    # ═════════════════════════════════════════════════════════════════════

    def create_workflow(self, test_id: str, epic_id: str, test_type: str,
                        test_definition: dict | None = None) -> dict:
        wf = workflow_service.create_workflow(test_id, epic_id, test_type, test_definition)
        db.session.commit()
        return wf.to_dict()

    def get_workflow(self, workflow_id: int) -> dict:
        return workflow_service.get_workflow(workflow_id).to_dict()

    def get_workflows_by_epic(self, epic_id: str) -> list[dict]:
        return [wf.to_dict() for wf in workflow_service.workflows_by_epic(epic_id)]

    def submit(self, workflow_id: int):
        """Queue a workflow on the bounded pool; returns its future."""
        return self.pool.submit(self.run, workflow_id)

    def orchestrate_epic(self, epic_id: str, definitions: list[dict]) -> dict:
        """Create one workflow per definition, run them concurrently, report."""
        ids = []
        for d in definitions:
            definition = {k: v for k, v in d.items() if k not in ("test_id", "test_type")}
            wf = workflow_service.create_workflow(d.get("test_id"), epic_id, d.get("test_type"),
                                                  definition or None)
            ids.append(wf.id)
        db.session.commit()
        logger.info("Epic %s: %d workflows queued", epic_id, len(ids), extra={"epic_id": epic_id})

        futures = [self.submit(wf_id) for wf_id in ids]
        wait(futures)
        db.session.expire_all()
        return self.epic_report(epic_id)

    def run(self, workflow_id: int) -> dict:
        """Run (or resume) a workflow until it is terminal or cancelled."""
        wf = workflow_service.get_workflow(workflow_id)
        while not wf.is_terminal:
            stage = wf.current_stage
            try:
                self.run_stage(wf, stage)
                db.session.commit()
            except WorkflowCancelledError as exc:
                self._record_cancelled(workflow_id, exc)
                break
            except StageTimeoutError as exc:
                self._fail(workflow_id, "timeout", exc)
            except ExhaustedRetriesError as exc:
                self._fail(workflow_id, "exhausted_retries", exc)
            except ConfigurationError as exc:
                self._fail(workflow_id, "configuration", exc)
            except Exception as exc:
                logger.exception("Workflow %d failed in stage %s", workflow_id, stage,
                                 extra={"workflow_id": workflow_id, "stage": stage})
                self._fail(workflow_id, "load_error", exc)
            wf = workflow_service.get_workflow(workflow_id)
        return wf.to_dict()

    def run_stage(self, wf: TestWorkflow, stage: str) -> bool:
        """Run one stage handler. Returns False (no-op) unless ``stage`` is current."""
        if wf.current_stage != stage or stage not in self._handlers:
            logger.debug("Workflow %d: stage %s skipped (current %s)", wf.id, stage, wf.current_stage)
            return False
        logger.info("Workflow %d: running %s", wf.id, stage,
                    extra={"workflow_id": wf.id, "test_id": wf.test_id, "stage": stage})
        self._handlers[stage](wf)
        return True

    def resume_in_progress(self, background: bool = False) -> list[int]:
        """Resume every ``in_progress`` workflow from its recorded stage."""
        ids = []
        for wf in workflow_service.in_progress_workflows():
            ceiling_ms = self._timeout(wf.current_stage) * 1000
            if elapsed_ms(wf.stage_started_at) > ceiling_ms:
                note = "interrupted past stage ceiling; resuming"
            else:
                note = "resuming after restart"
            wf.record_history(wf.current_stage, note)
            if wf.error_kind == "cancelled":
                wf.error_kind = None
                wf.error_message = None
            ids.append(wf.id)
        db.session.commit()

        if ids:
            logger.info("Resuming %d in-progress workflow(s)", len(ids))
        if background:
            for wf_id in ids:
                self.submit(wf_id)
        else:
            for wf_id in ids:
                self.run(wf_id)
        return ids

    def shutdown(self, wait_for_workflows: bool = True):
        """Signal in-flight stages to stop, then drain the pools."""
        self._shutdown.set()
        self.pool.shutdown(wait=wait_for_workflows)
        self.stage_executor.shutdown()

    # ── Reports ──────────────────────────────────────────────────────────

    def workflow_report(self, workflow_id: int) -> dict:
        wf = workflow_service.get_workflow(workflow_id)
        attempts = [a.to_dict() for a in workflow_service.fix_attempts(workflow_id)]
        return reporter.build_test_report(wf.to_dict(), attempts)

    def epic_report(self, epic_id: str) -> dict:
        reports = [
            reporter.build_test_report(
                wf.to_dict(), [a.to_dict() for a in workflow_service.fix_attempts(wf.id)]
            )
            for wf in workflow_service.workflows_by_epic(epic_id)
        ]
        return reporter.build_epic_report(epic_id, reports)

    def format_workflow_report(self, workflow_id: int) -> str:
        return reporter.format_workflow_report(self.workflow_report(workflow_id))

    def format_epic_report(self, epic_id: str) -> str:
        return reporter.format_epic_report(self.epic_report(epic_id))

    # ═════════════════════════════════════════════════════════════════════
    # Stage handlers
    # ═════════════════════════════════════════════════════════════════════

    def _stage_pending(self, wf: TestWorkflow):
        wf.transition_to("execution")

    def _stage_execution(self, wf: TestWorkflow):
        wf.set_result("execution", self._execute(wf))
        wf.transition_to("detection")

    def _stage_detection(self, wf: TestWorkflow):
        wf.set_result("detection", self._detect(wf))
        wf.transition_to("verification")

    def _stage_verification(self, wf: TestWorkflow):
        evidence = evidence_service.latest_evidence(wf.test_id, wf.epic_id)
        flags = red_flag_service.flags_for_verification(wf.test_id, wf.epic_id, evidence)
        evidence_dict = evidence.to_dict() if evidence else None
        history = (
            evidence_service.duration_history(evidence.test_name, exclude_id=evidence.id)
            if evidence else None
        )
        test_id, epic_id = wf.test_id, wf.epic_id

        result = self.stage_executor.run(
            "verification",
            lambda _cancel: self.verifier.verify(evidence_dict, flags, history,
                                                 test_id=test_id, epic_id=epic_id),
            self._timeout("verification"),
        )
        report = verification_service.save_report(result, workflow_id=wf.id)
        recommendation = result["recommendation"]
        workflow_service.settle_latest_attempt(wf.id, recommendation == "accept")
        wf.set_result("verification", {
            "report_id": report.id,
            "verified": result["verified"],
            "confidence_score": result["confidence_score"],
            "recommendation": recommendation,
            "summary": result["summary"],
            "concerns": result["concerns"],
            "recommendations": result["recommendations"],
        })

        if recommendation == "reject":
            if wf.retry_count >= self.max_fix_attempts:
                # Keep the report; the escalation path rolls back.
                db.session.commit()
                raise ExhaustedRetriesError(wf.retry_count)
            wf.transition_to("fixing", note=f"rejected at {result['confidence_score']:.1f}")
        elif recommendation == "manual_review":
            wf.transition_to("learning", note="manual review required; not auto-fixed")
        else:
            wf.transition_to("learning")

    def _stage_fixing(self, wf: TestWorkflow):
        attempt_number = wf.retry_count + 1
        evidence = evidence_service.latest_evidence(wf.test_id, wf.epic_id)
        flags = red_flag_service.flags_for_verification(wf.test_id, wf.epic_id, evidence)
        previous = [a.to_dict() for a in workflow_service.fix_attempts(wf.id)]

        plan = self.fix_engine.plan(
            attempt_number=attempt_number,
            test_type=wf.test_type,
            evidence=evidence.to_dict() if evidence else None,
            red_flags=flags,
            previous_attempts=previous,
        )
        outcome = self.stage_executor.run(
            "fixing", lambda cancel: self.fix_engine.execute(plan, cancel), self._timeout("fixing"),
        )
        workflow_service.record_fix_attempt(wf, plan, outcome)
        wf.retry_count = attempt_number

        rca = plan["rca"]
        wf.set_result("fixing", {
            "attempt_number": attempt_number,
            "tier": plan["tier"],
            "model": outcome.get("model"),
            "strategy": plan["strategy"],
            "reused_learning": plan["reused_learning"],
            "applied": outcome["applied"],
            "error": outcome.get("error"),
            "cost": outcome.get("cost") or 0.0,
            "classification": rca["category"],
            "flag_types": rca["flag_types"],
            "error_pattern": rca["error_pattern"],
            "rca": rca,
        })
        db.session.commit()

        if outcome["applied"]:
            wf.set_result("execution", self._execute(wf))
            wf.set_result("detection", self._detect(wf))
            wf.transition_to("verification", note=f"fix attempt {attempt_number} applied")
            return

        wf.record_history("fixing", f"attempt {attempt_number} not applied: {outcome.get('error')}")
        if attempt_number >= self.max_fix_attempts:
            db.session.commit()
            raise ExhaustedRetriesError(attempt_number)

    def _stage_learning(self, wf: TestWorkflow):
        verification = wf.get_result("verification") or {}
        fixing = wf.get_result("fixing")
        attempts = workflow_service.fix_attempts(wf.id)
        result = {"recorded": False, "manual_review": verification.get("recommendation") == "manual_review"}

        if fixing and attempts and attempts[-1].outcome == "success":
            try:
                learning = self.learning_store.record_success(
                    wf.test_type, fixing["flag_types"], fixing["classification"],
                    fixing["strategy"], fixing.get("error_pattern"),
                )
                result.update(recorded=True, pattern_signature=learning.pattern_signature,
                              reuse_count=learning.reuse_count)
            except Exception:
                logger.exception("Learning extraction failed for workflow %d", wf.id,
                                 extra={"workflow_id": wf.id, "stage": "learning"})
                db.session.rollback()
                wf = workflow_service.get_workflow(wf.id)
                result["error"] = "learning extraction failed"

        wf.set_result("learning", result)
        wf.transition_to("completed")

    # ═════════════════════════════════════════════════════════════════════
    # Helpers
    # ═════════════════════════════════════════════════════════════════════

    def _timeout(self, stage: str) -> float:
        return float(self.stage_timeouts.get(stage, self.stage_timeouts.get("execution", 300.0)))

    def _execute(self, wf: TestWorkflow) -> dict:
        definition = {**wf.test_definition, "test_id": wf.test_id, "epic_id": wf.epic_id,
                      "test_type": wf.test_type}
        result = self.stage_executor.run(
            "execution", lambda cancel: self.executor.execute(definition, cancel), self._timeout("execution"),
        )

        evidence_id = None
        if result.get("evidence"):
            payload = dict(result["evidence"])
            payload.update(epic_id=wf.epic_id, test_id=wf.test_id, test_type=wf.test_type)
            if result.get("passed") is not None:
                payload.setdefault("pass_fail", "pass" if result["passed"] else "fail")
            payload.setdefault("duration_ms", result.get("duration_ms"))
            if result.get("error"):
                payload.setdefault("error_message", result["error"])
            evidence_id = evidence_service.record_evidence(payload).id

        return {
            "passed": result.get("passed"),
            "duration_ms": result.get("duration_ms"),
            "error": result.get("error"),
            "evidence_id": evidence_id,
        }

    def _detect(self, wf: TestWorkflow) -> dict:
        evidence = evidence_service.latest_evidence(wf.test_id, wf.epic_id)
        if evidence is None:
            flags = RedFlagDetector.detect_no_evidence(wf.test_id, wf.epic_id, wf.test_type)
        else:
            evidence_dict = evidence.to_dict()
            history = evidence_service.duration_history(evidence.test_name, exclude_id=evidence.id)
            flags = self.stage_executor.run(
                "detection", lambda _cancel: self.detector.detect(evidence_dict, history),
                self._timeout("detection"),
            )
        red_flag_service.record_flags(flags, test_id=wf.test_id, epic_id=wf.epic_id, evidence=evidence)
        return {
            **summarize(flags),
            "evidence_id": evidence.id if evidence else None,
            "flag_types": sorted({f["flag_type"] for f in flags}),
        }

    def _record_cancelled(self, workflow_id: int, exc: Exception):
        db.session.rollback()
        wf = workflow_service.get_workflow(workflow_id)
        wf.error_kind = "cancelled"
        wf.error_message = str(exc)
        wf.record_history(wf.current_stage, "interrupted by shutdown; resumable")
        db.session.commit()
        logger.warning("Workflow %d cancelled in %s", workflow_id, wf.current_stage,
                       extra={"workflow_id": workflow_id, "stage": wf.current_stage})

    def _fail(self, workflow_id: int, error_kind: str, exc: Exception):
        db.session.rollback()
        wf = workflow_service.get_workflow(workflow_id)
        if wf.is_terminal:
            return

        message = str(exc)
        attempts = [a.to_dict() for a in workflow_service.fix_attempts(workflow_id)]
        rca = (wf.get_result("fixing") or {}).get("rca")
        escalation = self.escalation.escalate(
            wf.to_dict(), escalation_reason(error_kind, message), message, rca, attempts,
        )

        wf.escalated = True
        wf.error_kind = error_kind
        wf.error_message = message
        wf.handoff_path = escalation["handoff_path"]
        wf.handoff_summary = escalation["summary"]
        if wf.current_stage == "pending":
            wf.transition_to("execution")
        wf.transition_to("failed", note=f"{error_kind}: {message}")
        db.session.commit()
