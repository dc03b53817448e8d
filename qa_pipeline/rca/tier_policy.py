"""
Fix-attempt tier policy ("3-5-7" escalation).

    complexity       attempt 1   attempt 2   attempt 3
    simple           fast        balanced    strong
    moderate         balanced    strong      strong
    complex          strong      strong      strong
    requires_human   strong      strong      strong   (normally escalated first)

Pure functions; no model is invoked here.
"""

MAX_ATTEMPTS = 3

_POLICY = {
    "simple": ("fast", "balanced", "strong"),
    "moderate": ("balanced", "strong", "strong"),
    "complex": ("strong", "strong", "strong"),
    "requires_human": ("strong", "strong", "strong"),
}

# Approximate blended USD per 1M tokens, used before a call is made.
_ESTIMATE_PER_1M = {"fast": 1.25, "balanced": 15.0, "strong": 75.0}

TIER_DESCRIPTIONS = {
    "fast": "Fast, cost-effective model for simple fixes (typos, imports, formatting)",
    "balanced": "Balanced model for moderate complexity (refactoring, logic fixes)",
    "strong": "Most capable model for complex issues (architecture, algorithms)",
}


def select_tier(attempt_number: int, complexity: str) -> str:
    """Tier for ``attempt_number`` (1..3) of a failure with ``complexity``."""
    if not 1 <= attempt_number <= MAX_ATTEMPTS:
        raise ValueError(f"Invalid attempt number: {attempt_number}. Must be 1-{MAX_ATTEMPTS}.")
    try:
        return _POLICY[complexity][attempt_number - 1]
    except KeyError:
        raise ValueError(f"Unknown complexity: {complexity}") from None


def estimate_cost(tier: str, estimated_tokens: int = 5000) -> float:
    return estimated_tokens / 1_000_000 * _ESTIMATE_PER_1M[tier]
