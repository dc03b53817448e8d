"""
Confidence scoring and the accept / reject / manual_review decision.

Both functions are pure. Weights and thresholds arrive as mappings so a
deployment (or a test) can tune them without touching this module.

Score = 100
      − weight[severity]          per unresolved red flag
      − 15 × severity multiplier  per cross-validation mismatch
      − 25                        per missing required artifact
      − 20 / 10                   per high / other skeptical pattern
      − 30                        if integrity failed
      + 10                        if every required artifact is present and intact
clamped to [0, 100].
"""

from qa_pipeline.config import CONFIDENCE_WEIGHTS, RECOMMENDATION_THRESHOLDS, SEVERITY_MULTIPLIERS


def compute_confidence(
    *,
    red_flags: list[dict],
    cross_validation: list[dict],
    missing_artifacts: list[str],
    skeptical_patterns: list[dict],
    integrity_passed: bool | None,
    weights=CONFIDENCE_WEIGHTS,
    multipliers=SEVERITY_MULTIPLIERS,
) -> tuple[float, dict]:
    """Return ``(score, breakdown)``.

    ``integrity_passed=None`` means the integrity check itself could not run:
    no penalty and no comprehensive bonus.
    """
    unresolved = [f for f in red_flags if not f.get("resolved")]
    flag_penalty = sum(weights.get(f["severity"], 0.0) for f in unresolved)

    mismatch_penalty = sum(
        weights["cross_validation"] * multipliers.get(r.get("severity"), 1.0)
        for r in cross_validation if not r["matched"]
    )
    missing_penalty = weights["missing_artifact"] * len(missing_artifacts)
    skeptical_penalty = sum(
        weights["skeptical_high"] if p["severity"] == "high" else weights["skeptical_other"]
        for p in skeptical_patterns
    )
    integrity_penalty = weights["integrity_failure"] if integrity_passed is False else 0.0
    bonus = weights["comprehensive_bonus"] if (not missing_artifacts and integrity_passed is True) else 0.0

    raw = 100.0 - flag_penalty - mismatch_penalty - missing_penalty - skeptical_penalty - integrity_penalty + bonus
    score = round(min(100.0, max(0.0, raw)), 1)
    breakdown = {
        "base": 100.0,
        "red_flags": -flag_penalty,
        "cross_validation": -mismatch_penalty,
        "missing_artifacts": -missing_penalty,
        "skeptical": -skeptical_penalty,
        "integrity": -integrity_penalty,
        "comprehensive_bonus": bonus,
        "raw": raw,
        "final": score,
    }
    return score, breakdown


def has_unresolved_critical(red_flags: list[dict]) -> bool:
    return any(f["severity"] == "critical" and not f.get("resolved") for f in red_flags)


def recommend(score: float, unresolved_critical: bool, thresholds=RECOMMENDATION_THRESHOLDS) -> str:
    """accept ⇔ score ≥ accept threshold and no unresolved critical flag."""
    if unresolved_critical or score < thresholds["reject"]:
        return "reject"
    if score >= thresholds["accept"]:
        return "accept"
    return "manual_review"
