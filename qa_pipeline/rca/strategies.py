"""
Fix strategy templates and selection.

Selection order:
    1. a known-good strategy from fix learnings (if not already tried)
    2. the strategy the root-cause analysis recommended
    3. the category's templates, filtered and prioritized by model tier

A strategy that already failed on this workflow is never picked again.
Running out of candidates raises ExhaustedRetriesError.
"""

from qa_pipeline.core.exceptions import ExhaustedRetriesError

CATEGORY_STRATEGIES = {
    "syntax": ("typo_correction", "syntax_fix", "formatting"),
    "logic": ("refactor", "algorithm_fix", "condition_fix"),
    "integration": ("import_fix", "dependency_add", "api_update"),
    "environment": ("env_var_add", "config_fix", "permission_fix"),
}

_TIER_PREFERENCE = {
    "fast": ("typo_correction", "import_fix", "formatting"),
    "balanced": ("syntax_fix", "dependency_add", "env_var_add", "config_fix"),
    "strong": ("refactor", "algorithm_fix", "condition_fix", "api_update", "permission_fix"),
}

STRATEGY_DESCRIPTIONS = {
    "typo_correction": "Correct typos in variable/function names",
    "syntax_fix": "Fix syntax errors (missing brackets, colons, indentation)",
    "formatting": "Fix code formatting issues",
    "refactor": "Refactor code structure or logic",
    "algorithm_fix": "Fix algorithm or data structure issues",
    "condition_fix": "Fix conditional logic or boolean expressions",
    "import_fix": "Fix import statements or module paths",
    "dependency_add": "Add missing dependencies",
    "api_update": "Update API calls to match current interface",
    "env_var_add": "Add missing environment variables",
    "config_fix": "Fix configuration files",
    "permission_fix": "Fix file or resource permissions",
}

ALL_STRATEGIES = tuple(STRATEGY_DESCRIPTIONS)


def select_strategy(
    category: str,
    tier: str,
    failed: list[str],
    *,
    recommended: str | None = None,
    known: str | None = None,
) -> str:
    tried = set(failed)
    if known and known not in tried:
        return known
    if recommended and recommended not in tried:
        return recommended

    available = [s for s in CATEGORY_STRATEGIES.get(category, ()) if s not in tried]
    if not available:
        raise ExhaustedRetriesError(len(failed), "No more strategies available to try")

    for strategy in available:
        if strategy in _TIER_PREFERENCE.get(tier, ()):
            return strategy
    return available[0]


def describe(strategy: str) -> str:
    return STRATEGY_DESCRIPTIONS.get(strategy, "Unknown strategy")
