"""
Escalation handoffs.

A workflow that cannot be completed automatically ends in ``failed`` with
``escalated=True``. The handler writes a markdown handoff document to
``HANDOFF_DIR`` named ``{timestamp}-escalation-{test_id}.md`` and returns a
one-line summary stored on the workflow row.

Writing the file is best-effort: an unwritable directory is logged and the
escalation still completes with ``handoff_path=None``.
"""

import logging
import os
import re
from datetime import datetime, timezone

from qa_pipeline.rca.reporter import rca_summary

logger = logging.getLogger(__name__)

_EXPLANATIONS = {
    "exhausted_retries": (
        "All {attempts} automated fix attempts were used without the evidence passing "
        "verification. Further automated attempts are unlikely to succeed without human analysis."
    ),
    "requires_human": (
        "The root cause involves a design or architectural decision that needs human judgment. "
        "An automated fix could introduce technical debt or violate system constraints."
    ),
    "timeout": (
        "A pipeline stage exceeded its time ceiling. The stage was stopped rather than left pending."
    ),
    "configuration": (
        "The pipeline components are configured inconsistently, so the result could not be trusted."
    ),
    "load_error": (
        "An unrecoverable error occurred while loading or processing this test."
    ),
}

_NEXT_STEPS = {
    "exhausted_retries": [
        "Review all attempted fixes above",
        "Analyze why each fix failed verification",
        "Consider an approach none of the strategies covered",
        "Update the root cause analysis with new insights",
        "Implement the fix manually and re-run the workflow",
    ],
    "requires_human": [
        "Review the root cause analysis above",
        "Assess the architectural impact",
        "Record the decision (ADR) if needed",
        "Design and implement the fix with proper tests",
    ],
    "timeout": [
        "Check whether the test runner or model provider is reachable",
        "Inspect the stage that timed out in the stage history",
        "Raise the stage ceiling only if the test is legitimately slow",
        "Resume or re-run the workflow",
    ],
    "configuration": [
        "Fix the pipeline configuration named in the error",
        "Restart the service and re-run the workflow",
    ],
    "load_error": [
        "Read the error message and the application log for this workflow",
        "Check that the evidence artifacts exist and are readable",
        "Re-run the workflow once the cause is fixed",
    ],
}


def escalation_reason(error_kind: str, message: str | None = None) -> str:
    if error_kind == "exhausted_retries" and message and "human decision" in message:
        return "requires_human"
    return error_kind if error_kind in _EXPLANATIONS else "load_error"


def next_steps(reason: str) -> list[str]:
    return list(_NEXT_STEPS.get(reason, _NEXT_STEPS["load_error"]))


class EscalationHandler:
    def __init__(self, handoff_dir: str):
        self.handoff_dir = handoff_dir

    def escalate(self, workflow: dict, reason: str, message: str,
                 rca: dict | None = None, attempts: list[dict] | None = None) -> dict:
        attempts = attempts or []
        summary = self._summary(workflow, reason, message, rca)
        content = self.render(workflow, reason, message, rca, attempts)
        handoff_path = self._write(workflow["test_id"], content)

        logger.warning(
            "Workflow %s escalated (%s): %s", workflow.get("id"), reason, message,
            extra={"workflow_id": workflow.get("id"), "test_id": workflow["test_id"],
                   "epic_id": workflow.get("epic_id")},
        )
        return {
            "escalated": True,
            "reason": reason,
            "handoff_path": handoff_path,
            "summary": summary,
            "attempted_fixes": [f"{a['strategy']} ({a.get('model') or a['model_tier']})" for a in attempts],
        }

    @staticmethod
    def _summary(workflow, reason, message, rca) -> str:
        parts = [f"ESCALATED ({reason}) {workflow['test_id']}: {message}"]
        if rca:
            parts.append(rca_summary(rca))
        return " | ".join(parts)

    def render(self, workflow: dict, reason: str, message: str,
               rca: dict | None, attempts: list[dict]) -> str:
        lines = [
            "# Test Escalation Handoff",
            "",
            f"**Test ID:** {workflow['test_id']}",
            f"**Epic ID:** {workflow.get('epic_id')}",
            f"**Workflow:** {workflow.get('id')} (stage at failure: {workflow.get('current_stage')})",
            f"**Escalation Reason:** {reason}",
            f"**Date:** {datetime.now(timezone.utc).isoformat()}",
            "",
            "## Status",
            "",
            "🔴 **ESCALATED** - Human intervention required",
            "",
            f"**Error:** {message}",
            "",
        ]

        if rca:
            lines += [
                "## Root Cause Analysis",
                "",
                f"**Category:** {rca['category']}",
                f"**Complexity:** {rca['complexity']}",
                "",
                "**Root Cause:**",
                rca["root_cause"],
                "",
            ]
            if rca.get("diagnosis_reasoning"):
                lines += ["**Diagnosis Reasoning:**", rca["diagnosis_reasoning"], ""]

        if attempts:
            lines += ["## Attempted Fixes", "", f"**Total Attempts:** {len(attempts)}", ""]
            for a in attempts:
                lines.append(f"### Attempt {a['attempt_number']} - {a.get('model') or a['model_tier']}")
                lines.append("")
                lines.append(f"**Strategy:** {a['strategy']}")
                lines.append(f"**Result:** {'✅ Success' if a['outcome'] == 'success' else '❌ Failed'}")
                if a.get("error_message"):
                    lines.append(f"**Error:** {a['error_message']}")
                if a.get("changes_made"):
                    lines += ["", "**Changes:**", "```", a["changes_made"], "```"]
                lines.append("")
            total_cost = sum(a.get("cost") or 0.0 for a in attempts)
            lines += [f"**Total Cost:** ${total_cost:.4f}", ""]

        explanation = _EXPLANATIONS.get(reason, _EXPLANATIONS["load_error"]).format(
            attempts=len(attempts) or 3
        )
        lines += ["## Why Escalated", "", explanation, ""]
        lines += ["## Next Steps", ""]
        lines += [f"{i}. {step}" for i, step in enumerate(next_steps(reason), 1)]
        lines.append("")

        evidence_id = (rca or {}).get("evidence_id")
        lines += ["## Evidence", "", f"**Evidence Artifact ID:** {evidence_id or 'N/A'}", ""]
        return "\n".join(lines)

    def _write(self, test_id: str, content: str) -> str | None:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
        safe_id = re.sub(r"[^A-Za-z0-9_.-]+", "_", test_id)
        path = os.path.join(self.handoff_dir, f"{timestamp}-escalation-{safe_id}.md")
        try:
            os.makedirs(self.handoff_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(content)
        except OSError as exc:
            logger.error("Could not write handoff %s: %s", path, exc)
            return None
        return path
