"""Markdown rendering for root-cause analyses and their fix attempts."""

_CATEGORY_ICONS = {"syntax": "🔤", "logic": "🧠", "integration": "🔗", "environment": "⚙️"}
_COMPLEXITY_ICONS = {"simple": "🟢", "moderate": "🟡", "complex": "🟠", "requires_human": "🔴"}


def _category(category: str) -> str:
    return f"{_CATEGORY_ICONS.get(category, '')} {category.capitalize()}".strip()


def _complexity(complexity: str) -> str:
    return f"{_COMPLEXITY_ICONS.get(complexity, '')} {complexity.upper()}".strip()


def rca_summary(rca: dict) -> str:
    return f"[{rca['complexity']}] {rca['category']}: {rca['root_cause']}"


def format_rca_report(rca: dict, attempts: list[dict] | None = None) -> str:
    lines = ["# Root Cause Analysis Report", ""]
    lines.append(f"**Test ID:** {rca.get('test_id') or '-'}")
    lines.append(f"**Epic ID:** {rca.get('epic_id') or '-'}")
    lines.append("")

    lines += ["## Classification", ""]
    lines.append(f"**Category:** {_category(rca['category'])}")
    lines.append(f"**Complexity:** {_complexity(rca['complexity'])}")
    difficulty = rca.get("estimated_fix_difficulty", 0)
    lines.append(f"**Estimated Fix Difficulty:** {difficulty} {'retry' if difficulty == 1 else 'retries'}")
    lines.append("")

    if rca.get("symptoms"):
        lines += ["## Symptoms", ""]
        lines += [f"- {s}" for s in rca["symptoms"]]
        lines.append("")

    lines += ["## Root Cause", "", rca["root_cause"], ""]
    if rca.get("diagnosis_reasoning"):
        lines += ["## Diagnosis Reasoning", "", rca["diagnosis_reasoning"], ""]
    lines += ["## Recommended Fix Strategy", "", f"**Strategy:** {rca.get('recommended_strategy')}", ""]

    if attempts:
        lines += ["## Fix Attempts", ""]
        for a in attempts:
            lines.append(f"### Attempt {a['attempt_number']} ({a['model_tier']}, {a.get('model') or 'no model'})")
            lines.append("")
            lines.append(f"**Strategy:** {a['strategy']}{' (reused learning)' if a.get('reused_learning') else ''}")
            lines.append(f"**Result:** {'✅ Success' if a['outcome'] == 'success' else '❌ Failed'}")
            if a.get("verification_passed") is not None:
                lines.append(f"**Verification:** {'✅ Passed' if a['verification_passed'] else '❌ Failed'}")
            if a.get("error_message"):
                lines.append(f"**Error:** {a['error_message']}")
            if a.get("cost"):
                lines.append(f"**Cost:** ${a['cost']:.4f}")
            if a.get("changes_made"):
                lines += ["", "**Changes Made:**", "```", a["changes_made"], "```"]
            lines.append("")
    return "\n".join(lines)
