"""Markdown rendering for red-flag scans."""

import json

from qa_pipeline.models.red_flags import SEVERITY_RANK
from qa_pipeline.red_flags.detector import summarize

_SEVERITY_GUIDANCE = {
    "critical": "auto-fail",
    "high": "manual review",
    "medium": "log for analysis",
    "low": "informational",
}


def format_flag_report(test_id: str, flags: list[dict]) -> str:
    """Render the flags found for one test.

    ``flags`` may be detector output or ``RedFlag.to_dict()`` rows.
    """
    summary = summarize(flags)
    lines = [
        f"# Red Flag Detection Report: {test_id}",
        "",
        f"**Verdict:** {summary['verdict'].upper()}",
        "",
        summary["recommendation"],
        "",
        "## Summary",
        "",
        f"- Total flags: {summary['total_flags']}",
    ]
    for severity, guidance in _SEVERITY_GUIDANCE.items():
        lines.append(f"- {severity.capitalize()}: {summary[severity]} ({guidance})")
    lines.append("")

    if not flags:
        lines += ["## No Red Flags Detected", "", "All evidence checks passed."]
        return "\n".join(lines) + "\n"

    for severity in sorted(_SEVERITY_GUIDANCE, key=SEVERITY_RANK.get):
        group = [f for f in flags if f["severity"] == severity]
        if not group:
            continue
        lines += [f"## {severity.capitalize()} Flags", ""]
        for i, flag in enumerate(group, 1):
            lines.append(f"### {i}. {flag['flag_type']}")
            lines.append("")
            lines.append(flag["description"])
            lines.append("")
            if flag.get("detected_at"):
                lines.append(f"- Detected at: {flag['detected_at']}")
            if flag.get("resolved"):
                lines.append(f"- Resolved: {flag.get('resolution_notes') or 'yes'}")
            lines += [
                "",
                "```json",
                json.dumps(flag.get("proof") or {}, indent=2, default=str),
                "```",
                "",
            ]
    return "\n".join(lines)


def format_batch_report(flags_by_test: dict[str, list[dict]]) -> str:
    """One-line-per-test overview for an epic-wide scan."""
    all_flags = [f for flags in flags_by_test.values() for f in flags]
    summary = summarize(all_flags)
    lines = [
        "# Red Flag Batch Report",
        "",
        f"**Tests scanned:** {len(flags_by_test)}  ",
        f"**Verdict:** {summary['verdict'].upper()}",
        "",
        "| Test | Critical | High | Medium | Low | Verdict |",
        "|------|----------|------|--------|-----|---------|",
    ]
    for test_id, flags in sorted(flags_by_test.items()):
        s = summarize(flags)
        lines.append(
            f"| {test_id} | {s['critical']} | {s['high']} | {s['medium']} | {s['low']} | {s['verdict']} |"
        )
    return "\n".join(lines) + "\n"
