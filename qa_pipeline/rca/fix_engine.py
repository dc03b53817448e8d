"""
QA Verification Pipeline
RCA fix engine — classify → select tier → generate fix → apply.

Re-verification is not done here: after a fix is applied the orchestrator
re-executes the test and sends the workflow back through verification.

The engine is split along the threading boundary:

    plan()     workflow thread — reads fix learnings, raises when exhausted
    execute()  stage thread    — model call + application, no database access

Ceiling: 3 attempts per workflow. ``requires_human`` failures are escalated
before any attempt is made.
"""

import logging
import threading

from qa_pipeline.ai.gateway import ModelGateway
from qa_pipeline.core.exceptions import ExhaustedRetriesError, WorkflowCancelledError
from qa_pipeline.rca.analyzer import RootCauseAnalyzer
from qa_pipeline.rca.fix_applier import FixApplier, ProposalFixApplier
from qa_pipeline.rca.learning_store import FixLearningStore
from qa_pipeline.rca.strategies import describe, select_strategy
from qa_pipeline.rca.tier_policy import MAX_ATTEMPTS, estimate_cost, select_tier

logger = logging.getLogger(__name__)

FIX_SYSTEM_PROMPT = (
    "You fix failing automated tests. Reply with the minimal code change that "
    "resolves the root cause. Do not weaken or delete the test."
)


def build_fix_prompt(plan: dict) -> str:
    rca = plan["rca"]
    lines = [
        f"Fix strategy: {plan['strategy']} ({describe(plan['strategy'])})",
        f"Test: {rca.get('test_id')} (attempt {plan['attempt_number']} of {MAX_ATTEMPTS})",
        f"Category: {rca['category']} / complexity: {rca['complexity']}",
        f"Root cause: {rca['root_cause']}",
    ]
    if rca.get("symptoms"):
        lines.append("Symptoms:")
        lines += [f"- {s}" for s in rca["symptoms"]]
    if rca.get("files_involved"):
        lines.append(f"Files involved: {', '.join(rca['files_involved'])}")
    if plan.get("failed_strategies"):
        lines.append(f"Already tried without success: {', '.join(plan['failed_strategies'])}")
    return "\n".join(lines)


class RCAFixEngine:
    def __init__(
        self,
        gateway: ModelGateway,
        applier: FixApplier | None = None,
        learning_store: FixLearningStore | None = None,
        analyzer: RootCauseAnalyzer | None = None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.gateway = gateway
        self.applier = applier or ProposalFixApplier()
        self.learning_store = learning_store or FixLearningStore()
        self.analyzer = analyzer or RootCauseAnalyzer()
        self.max_attempts = max(1, min(max_attempts, MAX_ATTEMPTS))

    def plan(
        self,
        *,
        attempt_number: int,
        test_type: str,
        evidence: dict | None,
        red_flags: list[dict],
        previous_attempts: list[dict],
    ) -> dict:
        """Root-cause analysis plus tier and strategy for the next attempt.

        Raises:
            ExhaustedRetriesError: ceiling reached, no untried strategy left,
                or the failure needs a human decision.
        """
        if attempt_number > self.max_attempts:
            raise ExhaustedRetriesError(attempt_number - 1)

        rca = self.analyzer.analyze(evidence, red_flags, previous_attempts)
        if rca["complexity"] == "requires_human":
            raise ExhaustedRetriesError(len(previous_attempts), "Root cause requires human decision")

        tier = select_tier(attempt_number, rca["complexity"])
        failed = [a["strategy"] for a in previous_attempts if a.get("outcome") != "success"]

        learning = self.learning_store.lookup(test_type, rca["flag_types"], rca["category"])
        known = learning.successful_strategy if learning else None
        strategy = select_strategy(
            rca["category"], tier, failed,
            recommended=rca["recommended_strategy"], known=known,
        )
        reused = known is not None and strategy == known

        logger.info(
            "Fix attempt %d planned: tier=%s strategy=%s%s",
            attempt_number, tier, strategy, " (reused learning)" if reused else "",
            extra={"test_id": rca.get("test_id"), "stage": "fixing"},
        )
        return {
            "attempt_number": attempt_number,
            "tier": tier,
            "model": None if reused else self.gateway.selector.model_for(tier),
            "strategy": strategy,
            "reused_learning": reused,
            "failed_strategies": failed,
            "estimated_cost": 0.0 if reused else estimate_cost(tier),
            "rca": rca,
        }

    def execute(self, plan: dict, cancel_event: threading.Event | None = None) -> dict:
        """Generate (unless a learning is reused) and apply the fix."""
        if plan["reused_learning"]:
            proposal = f"Reapply known fix '{plan['strategy']}': {describe(plan['strategy'])}"
            cost, model = 0.0, None
        else:
            try:
                result = self.gateway.invoke(
                    plan["tier"], build_fix_prompt(plan),
                    system=FIX_SYSTEM_PROMPT, cancel_event=cancel_event,
                )
            except WorkflowCancelledError:
                raise
            except Exception as exc:
                logger.warning("Fix generation failed on attempt %d: %s", plan["attempt_number"], exc)
                return {"applied": False, "changes_made": "", "error": f"Fix generation failed: {exc}",
                        "cost": 0.0, "model": plan.get("model")}
            proposal, cost, model = result["text"], result["cost"], result["model"]

        outcome = self.applier.apply(plan, proposal, cancel_event)
        return {
            "applied": bool(outcome.get("applied")),
            "changes_made": outcome.get("changes_made") or "",
            "error": outcome.get("error"),
            "cost": cost,
            "model": model,
        }
