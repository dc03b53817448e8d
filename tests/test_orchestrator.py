"""
Workflow orchestration end-to-end.

Scenarios run against real artifact files and the in-memory database:
    - clean pass → completed without fixes
    - hallucinated pass that never recovers → 3 fix attempts, failed + escalated
    - hallucinated pass fixed on attempt 1 → learning recorded, reused next time
    - coverage that did not move → manual review, not auto-fixed
    - crash recovery: resume from the persisted stage without re-running work
    - stage ceiling → failed with error_kind=timeout
    - shutdown mid-run → row stays in_progress and resumes later
    - tier collision → ConfigurationError before anything runs
    - epic batch through the worker pool
"""

import os
import threading

import pytest

from qa_pipeline.core.exceptions import ConfigurationError
from qa_pipeline.models import db
from qa_pipeline.orchestration.executors import TestExecutor
from qa_pipeline.rca.learning_store import FixLearningStore
from qa_pipeline.services import verification_service, workflow_service


class ScriptedExecutor(TestExecutor):
    """Returns queued execution results in order; the last one repeats."""

    def __init__(self, *evidence_sets, passed=True, duration_ms=2400):
        self._results = [
            {"passed": passed, "duration_ms": duration_ms, "evidence": ev, "error": None}
            for ev in evidence_sets
        ]
        self.calls = 0
        self._lock = threading.Lock()

    def execute(self, test_definition, cancel_event=None):
        with self._lock:
            index = min(self.calls, len(self._results) - 1)
            self.calls += 1
        return dict(self._results[index])


class BlockingExecutor(TestExecutor):
    """Waits on the cancel event, i.e. never finishes on its own."""

    def execute(self, test_definition, cancel_event=None):
        cancel_event.wait(10)
        return {"passed": True, "duration_ms": 0, "evidence": None, "error": None}


@pytest.fixture()
def good_evidence(ui_evidence):
    return ui_evidence()


@pytest.fixture()
def bad_evidence(ui_evidence):
    """UI pass with no screenshots at all: two critical missing-evidence flags."""
    return ui_evidence(skip=("screenshot_before", "screenshot_after"))


def _stages(wf):
    return [h["stage"] for h in wf["stage_history"]]


# ═════════════════════════════════════════════════════════════════════════════
# Single workflow outcomes
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowOutcomes:
    """Full runs from pending to a terminal stage."""

    def test_clean_pass_completes(self, make_orchestrator, good_evidence):
        orch = make_orchestrator(executor=ScriptedExecutor(good_evidence))
        wf = orch.create_workflow("ui-login", "EPIC-1", "ui")
        result = orch.run(wf["id"])

        assert result["status"] == "completed"
        assert result["retry_count"] == 0
        assert result["escalated"] is False
        assert result["results"]["verification"]["recommendation"] == "accept"
        assert result["results"]["verification"]["confidence_score"] == 100.0
        assert result["results"]["learning"]["recorded"] is False
        assert _stages(result) == ["pending", "execution", "detection", "verification", "learning", "completed"]
        assert workflow_service.fix_attempts(wf["id"]) == []

    def test_never_recovers_exhausts_retries(self, make_orchestrator, bad_evidence, tmp_path):
        executor = ScriptedExecutor(bad_evidence)
        orch = make_orchestrator(executor=executor)
        wf = orch.create_workflow("ui-login", "EPIC-1", "ui")
        result = orch.run(wf["id"])

        assert result["status"] == "failed"
        assert result["current_stage"] == "failed"
        assert result["error_kind"] == "exhausted_retries"
        assert result["escalated"] is True
        assert result["retry_count"] == 3
        assert result["handoff_summary"].startswith("ESCALATED (exhausted_retries) ui-login")

        attempts = workflow_service.fix_attempts(wf["id"])
        assert [a.attempt_number for a in attempts] == [1, 2, 3]
        assert [a.strategy for a in attempts] == ["config_fix", "permission_fix", "env_var_add"]
        assert [a.model_tier for a in attempts] == ["balanced", "strong", "strong"]
        assert all(a.outcome == "failure" and a.verification_passed is False for a in attempts)

        reports = verification_service.list_reports(workflow_id=wf["id"])
        assert len(reports) == 4
        assert {r.recommendation for r in reports} == {"reject"}
        assert executor.calls == 4

        assert result["handoff_path"].startswith(str(tmp_path / "handoffs"))
        with open(result["handoff_path"], encoding="utf-8") as fh:
            handoff = fh.read()
        assert handoff.startswith("# Test Escalation Handoff")
        assert "**Total Attempts:** 3" in handoff
        assert "**Escalation Reason:** exhausted_retries" in handoff

    def test_fixed_on_first_attempt_records_learning(self, make_orchestrator, bad_evidence, good_evidence):
        orch = make_orchestrator(executor=ScriptedExecutor(bad_evidence, good_evidence))
        wf = orch.create_workflow("ui-login", "EPIC-1", "ui")
        result = orch.run(wf["id"])

        assert result["status"] == "completed"
        assert result["retry_count"] == 1
        assert result["results"]["verification"]["recommendation"] == "accept"
        learning = result["results"]["learning"]
        assert learning["recorded"] is True
        assert learning["pattern_signature"] == "ui|missing_evidence|environment"
        assert learning["reuse_count"] == 1

        (attempt,) = workflow_service.fix_attempts(wf["id"])
        assert attempt.outcome == "success"
        assert attempt.verification_passed is True
        assert attempt.strategy == "config_fix"
        assert "fixing" in _stages(result)

    def test_learning_is_reused_by_next_workflow(self, make_orchestrator, bad_evidence, good_evidence):
        orch = make_orchestrator(
            executor=ScriptedExecutor(bad_evidence, good_evidence, bad_evidence, good_evidence)
        )
        first = orch.run(orch.create_workflow("ui-login", "EPIC-1", "ui")["id"])
        assert first["status"] == "completed"

        second = orch.run(orch.create_workflow("ui-signup", "EPIC-1", "ui")["id"])
        assert second["status"] == "completed"
        (attempt,) = workflow_service.fix_attempts(second["id"])
        assert attempt.reused_learning is True
        assert attempt.model is None
        assert attempt.cost == 0.0

        learning = FixLearningStore().lookup("ui", ["missing_evidence"], "environment")
        assert learning.successful_strategy == "config_fix"
        assert learning.reuse_count == 2

    def test_manual_review_is_not_auto_fixed(self, make_orchestrator, unit_evidence):
        executor = ScriptedExecutor(unit_evidence(before=120, after=120), duration_ms=1200)
        orch = make_orchestrator(executor=executor)
        result = orch.run(orch.create_workflow("unit-pricing", "EPIC-1", "unit")["id"])

        assert result["status"] == "completed"
        assert result["results"]["verification"]["recommendation"] == "manual_review"
        assert result["results"]["learning"]["manual_review"] is True
        assert "fixing" not in _stages(result)
        report = orch.workflow_report(result["id"])
        assert report["recommendation"] == "manual_review"
        assert report["passed"] is False
        assert report["summary"].startswith("⚠️ Test needs manual review")

    def test_run_on_terminal_workflow_is_a_noop(self, make_orchestrator, good_evidence):
        executor = ScriptedExecutor(good_evidence)
        orch = make_orchestrator(executor=executor)
        wf_id = orch.create_workflow("ui-login", "EPIC-1", "ui")["id"]
        orch.run(wf_id)
        again = orch.run(wf_id)
        assert again["status"] == "completed"
        assert executor.calls == 1


# ═════════════════════════════════════════════════════════════════════════════
# Recovery, ceilings and shutdown
# ═════════════════════════════════════════════════════════════════════════════


class TestRecovery:
    def test_resume_continues_from_persisted_stage(self, make_orchestrator, good_evidence):
        executor = ScriptedExecutor(good_evidence)
        orch = make_orchestrator(executor=executor)
        wf_id = orch.create_workflow("ui-login", "EPIC-1", "ui")["id"]

        wf = workflow_service.get_workflow(wf_id)
        for stage in ("pending", "execution", "detection"):
            assert orch.run_stage(wf, stage) is True
            db.session.commit()
        assert wf.current_stage == "verification"
        assert orch.run_stage(wf, "execution") is False

        assert orch.resume_in_progress() == [wf_id]
        result = orch.get_workflow(wf_id)
        assert result["status"] == "completed"
        assert executor.calls == 1
        notes = [h.get("note") for h in result["stage_history"]]
        assert "resuming after restart" in notes

    def test_stage_ceiling_fails_with_timeout(self, make_orchestrator):
        orch = make_orchestrator(executor=BlockingExecutor(), stage_timeouts={"execution": 0.2})
        result = orch.run(orch.create_workflow("ui-login", "EPIC-1", "ui")["id"])

        assert result["status"] == "failed"
        assert result["error_kind"] == "timeout"
        assert result["escalated"] is True
        assert os.path.exists(result["handoff_path"])
        report = orch.workflow_report(result["id"])
        assert report["summary"].startswith("❌ Test failed: Stage 'execution' exceeded")
        assert report["next_steps"][0] == "Check whether the test runner or model provider is reachable"

    def test_shutdown_leaves_workflow_resumable(self, make_orchestrator, good_evidence):
        orch = make_orchestrator(executor=ScriptedExecutor(good_evidence))
        wf_id = orch.create_workflow("ui-login", "EPIC-1", "ui")["id"]
        orch.shutdown()

        interrupted = orch.run(wf_id)
        assert interrupted["status"] == "in_progress"
        assert interrupted["current_stage"] == "execution"
        assert interrupted["error_kind"] == "cancelled"
        assert interrupted["escalated"] is False

        restarted = make_orchestrator(executor=ScriptedExecutor(good_evidence))
        assert restarted.resume_in_progress() == [wf_id]
        result = restarted.get_workflow(wf_id)
        assert result["status"] == "completed"
        assert result["error_kind"] is None
        notes = [h.get("note") for h in result["stage_history"]]
        assert "interrupted by shutdown; resumable" in notes


class TestConfiguration:
    def test_equal_tiers_refuse_to_start(self, make_orchestrator, app, monkeypatch):
        monkeypatch.setitem(app.config, "VERIFIER_TIER", "fast")
        with pytest.raises(ConfigurationError):
            make_orchestrator()


# ═════════════════════════════════════════════════════════════════════════════
# Epic batches
# ═════════════════════════════════════════════════════════════════════════════


class TestEpicOrchestration:
    def test_epic_runs_through_pool(self, make_orchestrator, good_evidence, unit_evidence):
        orch = make_orchestrator()
        definitions = [
            {"test_id": "ui-a", "test_type": "ui",
             "result": {"passed": True, "duration_ms": 2400, "evidence": good_evidence}},
            {"test_id": "unit-b", "test_type": "unit",
             "result": {"passed": True, "duration_ms": 1200,
                        "evidence": unit_evidence(before=120, after=120)}},
        ]
        report = orch.orchestrate_epic("EPIC-7", definitions)

        assert report["total_tests"] == 2
        assert report["passed_tests"] == 1
        assert report["recommendation"] == "reject"
        by_test = {r["test_id"]: r for r in report["test_reports"]}
        assert by_test["ui-a"]["recommendation"] == "accept"
        assert by_test["unit-b"]["recommendation"] == "manual_review"

        markdown = orch.format_epic_report("EPIC-7")
        assert markdown.startswith("# Epic Test Report: EPIC-7")
        assert "### unit-b" in markdown
        assert len(orch.get_workflows_by_epic("EPIC-7")) == 2
