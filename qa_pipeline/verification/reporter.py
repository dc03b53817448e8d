"""
Plain-language verification reporting.

Builds the summary, reasoning and next-step recommendations stored on each
VerificationReport, and renders a persisted report as markdown.
"""

_CHECK_LABELS = (
    ("files_exist", "Files exist"),
    ("timestamps_sequential", "Timestamps sequential"),
    ("sizes_reasonable", "Sizes reasonable"),
    ("formats_correct", "Formats correct"),
)


def _mark(ok) -> str:
    if ok is None:
        return "n/a"
    return "✅" if ok else "❌"


def build_summary(recommendation: str, score: float, concerns: list[str]) -> str:
    if recommendation == "accept":
        return (
            f"✅ Verification PASSED with high confidence ({score:g}%). "
            "Evidence is complete and consistent."
        )
    if recommendation == "manual_review":
        lead = f" First concern: {concerns[0]}" if concerns else ""
        return (
            f"⚠️ MANUAL REVIEW REQUIRED ({score:g}% confidence). "
            f"{len(concerns)} concern(s) identified.{lead}"
        )
    if concerns:
        return (
            f"❌ Verification FAILED ({score:g}% confidence). "
            f"{len(concerns)} concern(s) identified: {concerns[0]}"
        )
    return f"❌ Verification FAILED ({score:g}% confidence). Evidence does not support test result."


def build_reasoning(
    evidence_reviewed: dict,
    integrity: dict,
    cross_validation: list[dict],
    flag_summary: dict,
    flag_descriptions: list[str],
    skeptical: dict,
    breakdown: dict,
    thresholds,
) -> str:
    lines = ["**Evidence Review:**"]
    lines.append(
        f"- Reviewed {evidence_reviewed.get('total_artifacts', 0)} artifact(s) "
        f"({evidence_reviewed.get('screenshots', 0)} screenshots, "
        f"{evidence_reviewed.get('logs', 0)} logs, {evidence_reviewed.get('traces', 0)} traces)"
    )
    missing = evidence_reviewed.get("missing_artifacts") or []
    if missing:
        lines.append(f"- ⚠️ Missing artifacts: {', '.join(missing)}")
    lines.append("")

    lines.append("**Integrity Checks:**")
    checks = integrity.get("checks") or {}
    for key, label in _CHECK_LABELS:
        lines.append(f"- {label}: {_mark(checks.get(key))}")
    if integrity.get("errors"):
        lines.append(f"- ⚠️ Errors: {'; '.join(integrity['errors'])}")
    lines.append("")

    lines.append("**Cross-Validation:**")
    mismatches = [r for r in cross_validation if not r["matched"]]
    if not mismatches:
        lines.append("- ✅ All evidence sources are consistent")
    else:
        lines.append(f"- ⚠️ {len(mismatches)} inconsistencies detected:")
        for m in mismatches:
            lines.append(f"  - {m['type']} ({m.get('severity', 'medium')}): {m['description']}")
    lines.append("")

    lines.append("**Red Flags:**")
    if not flag_summary["total_flags"]:
        lines.append("- ✅ No red flags detected")
    else:
        lines.append(
            f"- 🚩 {flag_summary['total_flags']} flags: {flag_summary['critical']} critical, "
            f"{flag_summary['high']} high, {flag_summary['medium']} medium, {flag_summary['low']} low"
        )
        for desc in flag_descriptions[:3]:
            lines.append(f"  - {desc}")
        if len(flag_descriptions) > 3:
            lines.append(f"  - ... and {len(flag_descriptions) - 3} more")
    lines.append("")

    if skeptical.get("suspicious"):
        lines.append("**Suspicious Patterns:**")
        for concern in skeptical.get("concerns", []):
            lines.append(f"- ⚠️ {concern}")
        lines.append("")

    lines.append("**Confidence Breakdown:**")
    lines.append(
        f"- Final score: {breakdown.get('final', 0):g}% "
        f"(accept at ≥{thresholds['accept']:g}%, reject below {thresholds['reject']:g}%)"
    )
    parts = [
        f"{label} {breakdown[key]:+g}"
        for key, label in (
            ("red_flags", "red flags"),
            ("cross_validation", "cross-validation"),
            ("missing_artifacts", "missing artifacts"),
            ("skeptical", "skeptical"),
            ("integrity", "integrity"),
            ("comprehensive_bonus", "comprehensive evidence"),
        )
        if breakdown.get(key)
    ]
    lines.append(f"- Started at 100; {', '.join(parts) if parts else 'no adjustments'}")
    return "\n".join(lines)


def build_recommendations(recommendation: str, flag_summary: dict, skeptical: dict,
                          concerns: list[str]) -> list[str]:
    steps = []
    if recommendation == "reject":
        steps.append("❌ Do NOT merge this code - verification failed")
        steps.append("Review test implementation and re-run verification")
    elif recommendation == "manual_review":
        steps.append("⚠️ Manual review required before merging")
        steps.append("Confidence score below the auto-accept threshold")
    else:
        steps.append("✅ Safe to merge - verification passed with high confidence")

    if flag_summary.get("critical"):
        steps.append(f"🚩 Address {flag_summary['critical']} critical red flag(s) immediately")
    if flag_summary.get("high"):
        steps.append(f"⚠️ Review {flag_summary['high']} high-severity red flag(s)")
    if skeptical.get("suspicious"):
        steps.append("⚠️ Suspicious patterns detected - verify test actually executed")
    if concerns:
        steps.append(f"📋 Address {len(concerns)} concern(s) noted in reasoning")
    return steps


def format_verification_report(report: dict) -> str:
    """Render a VerificationReport (``to_dict()`` form) as markdown."""
    lines = [f"# Verification Report: {report['test_id']}", ""]
    lines.append(f"**Epic:** {report['epic_id']}")
    lines.append(f"**Verified At:** {report.get('verified_at') or '-'}")
    lines.append(f"**Verifier Model:** {report.get('verifier_model') or '-'}")
    lines.append("")

    lines += ["## Summary", "", report.get("summary") or "", ""]

    lines += ["## Outcome", ""]
    lines.append(f"- **Verified:** {'✅ PASS' if report['verified'] else '❌ FAIL'}")
    lines.append(f"- **Confidence Score:** {report['confidence_score']:g}%")
    lines.append(f"- **Recommendation:** {report['recommendation'].upper()}")
    lines.append("")

    concerns = report.get("concerns") or []
    if concerns:
        lines += ["## Concerns", ""]
        lines += [f"{i}. {c}" for i, c in enumerate(concerns, 1)]
        lines.append("")

    lines += ["## Detailed Analysis", "", report.get("reasoning") or "", ""]
    return "\n".join(lines)
