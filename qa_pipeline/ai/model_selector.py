"""
QA Verification Pipeline
Model tiers & selection.

Model tiers (ordered by capability):
    fast     — syntax / import fixes, first fix attempt     (cheapest)
    balanced — moderate reasoning, independent verification
    strong   — logic / integration fixes, final attempt     (most capable)

Tier comparisons are how the verifier proves it is not grading its own
homework: it must sit strictly above the executor's tier.
"""

import logging

from qa_pipeline.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

TIER_ORDER = ("fast", "balanced", "strong")

MODEL_TIERS = {
    "fast": "claude-3-5-haiku-20241022",
    "balanced": "claude-3-5-sonnet-20241022",
    "strong": "claude-3-opus-20240229",
}

LOCAL_MODEL = "local-stub"

# Token costs per 1M tokens (input/output)
TOKEN_COSTS = {
    "claude-3-5-haiku-20241022":   {"input": 1.00, "output": 5.00},
    "claude-3-5-sonnet-20241022":  {"input": 3.00, "output": 15.00},
    "claude-3-opus-20240229":      {"input": 15.00, "output": 75.00},
}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate USD cost for a given model + token counts."""
    costs = TOKEN_COSTS.get(model, {"input": 0.0, "output": 0.0})
    return (prompt_tokens * costs["input"] + completion_tokens * costs["output"]) / 1_000_000


def tier_rank(tier: str) -> int:
    """Position of ``tier`` in TIER_ORDER; unknown tiers are a wiring error."""
    try:
        return TIER_ORDER.index(tier)
    except ValueError:
        raise ConfigurationError(
            f"Unknown model tier {tier!r} (expected one of {', '.join(TIER_ORDER)})"
        ) from None


class ModelSelector:
    """Maps a tier to a concrete model for the configured provider."""

    def __init__(self, provider: str = "local", overrides: dict | None = None):
        self.provider = provider
        self.models = {**MODEL_TIERS, **(overrides or {})}

    def model_for(self, tier: str) -> str:
        tier_rank(tier)
        if self.provider == "local":
            return LOCAL_MODEL
        model = self.models[tier]
        logger.debug("ModelSelector: tier=%s → model=%s", tier, model)
        return model
