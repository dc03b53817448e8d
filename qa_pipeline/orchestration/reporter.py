"""
QA Verification Pipeline
Plain-language workflow and epic reports.

Every workflow, whether it completed or failed, gets a report; failed ones
always carry concrete next steps.

Epic recommendation:
    100% passed and average confidence >= 90  → accept
    pass rate >= 80%                          → manual_review
    otherwise                                 → reject
"""

from qa_pipeline.orchestration.escalation import escalation_reason, next_steps

_REC_ICONS = {"accept": "✅", "manual_review": "⚠️", "reject": "❌"}


def _confidence(workflow: dict) -> float:
    verification = workflow["results"].get("verification") or {}
    return float(verification.get("confidence_score") or 0.0)


def _flag_count(workflow: dict) -> int:
    detection = workflow["results"].get("detection") or {}
    return int(detection.get("total_flags") or 0)


def workflow_recommendation(workflow: dict) -> str:
    if workflow["status"] == "failed":
        return "reject"
    verification = workflow["results"].get("verification") or {}
    return verification.get("recommendation") or "manual_review"


def _test_summary(workflow: dict, attempts: list[dict]) -> str:
    confidence = _confidence(workflow)
    flags = _flag_count(workflow)
    recommendation = workflow_recommendation(workflow)

    if workflow["status"] == "failed":
        if workflow.get("error_kind") == "timeout":
            return f"❌ Test failed: {workflow.get('error_message')}. Requires manual intervention."
        if attempts:
            last = attempts[-1]["strategy"]
            return (
                f"❌ Test failed. Fix attempted {len(attempts)} time(s), last using \"{last}\", "
                f"but verification still failing. Requires manual intervention."
            )
        if flags:
            return f"❌ Test failed. {flags} red flag(s) detected (confidence: {confidence:.1f}%). See evidence for details."
        return f"❌ Test failed (confidence: {confidence:.1f}%). {workflow.get('error_message') or 'Review evidence and verification concerns.'}"

    if workflow["status"] != "completed":
        return f"⏳ Workflow is {workflow['status']} at stage '{workflow['current_stage']}'."

    if recommendation == "accept" and flags == 0:
        return f"✅ Test passed with high confidence ({confidence:.1f}%). All evidence verified, no red flags detected."
    if recommendation == "accept":
        return f"✅ Test passed ({confidence:.1f}%) with {flags} low-impact red flag(s)."
    return (
        f"⚠️ Test needs manual review (confidence: {confidence:.1f}%, {flags} red flag(s)). "
        f"It was not auto-fixed."
    )


def build_test_report(workflow: dict, attempts: list[dict]) -> dict:
    verification = workflow["results"].get("verification") or {}
    learning = workflow["results"].get("learning") or {}
    recommendation = workflow_recommendation(workflow)

    if workflow["status"] == "failed":
        steps = next_steps(escalation_reason(workflow.get("error_kind") or "load_error",
                                             workflow.get("error_message")))
    else:
        steps = list(verification.get("recommendations") or [])

    return {
        "workflow_id": workflow["id"],
        "test_id": workflow["test_id"],
        "epic_id": workflow["epic_id"],
        "test_type": workflow["test_type"],
        "status": workflow["status"],
        "passed": workflow["status"] == "completed" and recommendation == "accept",
        "confidence": _confidence(workflow),
        "recommendation": recommendation,
        "summary": _test_summary(workflow, attempts),
        "red_flags": _flag_count(workflow),
        "concerns": list(verification.get("concerns") or []),
        "fixes_applied": len(attempts),
        "fix_cost": round(sum(a.get("cost") or 0.0 for a in attempts), 6),
        "learning_recorded": bool(learning.get("recorded")),
        "escalated": workflow["escalated"],
        "error_kind": workflow.get("error_kind"),
        "handoff_path": workflow.get("handoff_path"),
        "next_steps": steps,
        "duration_ms": workflow.get("duration_ms") or 0,
        "stages": [h["stage"] for h in workflow["stage_history"]],
    }


def format_workflow_report(report: dict) -> str:
    lines = [f"# Test Report: {report['test_id']}", ""]
    lines.append(f"**Epic:** {report['epic_id']}  ")
    lines.append(f"**Type:** {report['test_type']}  ")
    lines.append(f"**Status:** {report['status']}  ")
    icon = _REC_ICONS.get(report["recommendation"], "")
    lines.append(f"**Recommendation:** {icon} {report['recommendation'].upper()}  ")
    lines.append(f"**Confidence:** {report['confidence']:.1f}%  ")
    lines.append(f"**Duration:** {report['duration_ms']}ms")
    lines.append("")
    lines += ["## Summary", "", report["summary"], ""]

    if report["concerns"]:
        lines += ["## Concerns", ""]
        lines += [f"- {c}" for c in report["concerns"]]
        lines.append("")

    if report["fixes_applied"]:
        lines += ["## Fixes", "",
                  f"{report['fixes_applied']} automated fix attempt(s), total cost ${report['fix_cost']:.4f}.", ""]

    if report["escalated"]:
        lines += ["## Escalation", ""]
        lines.append(f"**Reason:** {report['error_kind']}")
        if report["handoff_path"]:
            lines.append(f"**Handoff:** `{report['handoff_path']}`")
        lines.append("")

    if report["next_steps"]:
        lines += ["## Next Steps", ""]
        lines += [f"{i}. {s}" for i, s in enumerate(report["next_steps"], 1)]
        lines.append("")

    lines += ["## Stages", "", " → ".join(report["stages"]) or "-", ""]
    return "\n".join(lines)


# ── Epic level ───────────────────────────────────────────────────────────


def _epic_recommendation(passed: int, total: int, avg_confidence: float) -> str:
    pass_rate = (passed / total * 100) if total else 0.0
    if total and pass_rate == 100 and avg_confidence >= 90:
        return "accept"
    if pass_rate >= 80:
        return "manual_review"
    return "reject"


def _epic_summary(passed: int, total: int, avg_confidence: float) -> str:
    failed = total - passed
    if not total:
        return "No tests recorded for this epic."
    pass_rate = passed / total * 100
    if pass_rate == 100 and avg_confidence >= 90:
        return f"✅ All {total} tests passed with high confidence (avg: {avg_confidence:.1f}%)."
    if pass_rate == 100:
        return f"⚠️ All {total} tests passed but with moderate confidence (avg: {avg_confidence:.1f}%)."
    if pass_rate >= 80:
        return f"⚠️ {passed}/{total} tests passed ({pass_rate:.1f}%). {failed} test(s) failed."
    return (
        f"❌ Only {passed}/{total} tests passed ({pass_rate:.1f}%). "
        f"{failed} test(s) failed. Manual review required."
    )


def build_epic_report(epic_id: str, test_reports: list[dict]) -> dict:
    total = len(test_reports)
    passed = sum(1 for r in test_reports if r["passed"])
    avg_confidence = sum(r["confidence"] for r in test_reports) / total if total else 0.0
    return {
        "epic_id": epic_id,
        "total_tests": total,
        "passed_tests": passed,
        "failed_tests": total - passed,
        "escalated_tests": sum(1 for r in test_reports if r["escalated"]),
        "avg_confidence": round(avg_confidence, 1),
        "summary": _epic_summary(passed, total, avg_confidence),
        "recommendation": _epic_recommendation(passed, total, avg_confidence),
        "total_duration_ms": sum(r["duration_ms"] for r in test_reports),
        "total_fix_cost": round(sum(r["fix_cost"] for r in test_reports), 6),
        "test_reports": test_reports,
    }


def format_epic_report(report: dict) -> str:
    icon = _REC_ICONS.get(report["recommendation"], "")
    lines = [
        f"# Epic Test Report: {report['epic_id']}",
        "",
        f"**Recommendation:** {icon} {report['recommendation'].upper()}  ",
        f"**Tests:** {report['passed_tests']}/{report['total_tests']} passed "
        f"({report['escalated_tests']} escalated)  ",
        f"**Average Confidence:** {report['avg_confidence']:.1f}%  ",
        f"**Fix Cost:** ${report['total_fix_cost']:.4f}",
        "",
        "## Summary",
        "",
        report["summary"],
        "",
        "## Tests",
        "",
        "| Test | Type | Status | Recommendation | Confidence | Fixes |",
        "|------|------|--------|----------------|------------|-------|",
    ]
    for r in report["test_reports"]:
        lines.append(
            f"| {r['test_id']} | {r['test_type']} | {r['status']} | {r['recommendation']} "
            f"| {r['confidence']:.1f}% | {r['fixes_applied']} |"
        )
    lines.append("")

    needing_attention = [r for r in report["test_reports"] if not r["passed"]]
    if needing_attention:
        lines += ["## Needs Attention", ""]
        for r in needing_attention:
            lines.append(f"### {r['test_id']}")
            lines.append("")
            lines.append(r["summary"])
            if r["next_steps"]:
                lines.append("")
                lines += [f"{i}. {s}" for i, s in enumerate(r["next_steps"], 1)]
            lines.append("")
    return "\n".join(lines)
