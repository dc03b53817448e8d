"""
QA Verification Pipeline
Failure classifier — keyword heuristics over the error text.

Categories:  syntax | logic | integration | environment
Complexity:  simple | moderate | complex | requires_human

A hallucinated pass usually has no error text at all; in that case the red
flags raised against the evidence decide the category instead.
"""

CATEGORIES = ("syntax", "logic", "integration", "environment")
COMPLEXITIES = ("simple", "moderate", "complex", "requires_human")

# Checked in order; first category with a matching keyword wins.
_CATEGORY_KEYWORDS = (
    ("syntax", (
        "syntaxerror", "unexpected token", "unexpected identifier",
        "missing semicolon", "invalid syntax", "indentationerror",
    )),
    ("integration", (
        "cannot find module", "modulenotfounderror", "importerror", "import error",
        "no such file", "enoent", "404", "connection refused", "network error", "timeout",
    )),
    ("environment", (
        "permission denied", "eacces", "environment variable", "config",
        "not defined", "undefined is not", "cannot read properties of undefined",
    )),
)

# When there is no error text, the deception signature points at the cause.
_FLAG_CATEGORY = {
    "tool_execution": "integration",
    "missing_evidence": "environment",
    "timing": "environment",
    "coverage": "logic",
    "inconsistent": "logic",
}

_SIMPLE_KEYWORDS = ("typo", "missing semicolon", "unexpected token", "import")
_HUMAN_KEYWORDS = ("architecture", "design", "business logic", "ambiguous", "unclear requirement")

_CATEGORY_REASONS = {
    "syntax": "Error message indicates syntax issue",
    "integration": "Error suggests missing dependency or API issue",
    "environment": "Error points to configuration or environment problem",
    "logic": "Error indicates logic or assertion failure",
}
_COMPLEXITY_REASONS = {
    "simple": "Issue appears straightforward to fix",
    "moderate": "Issue may require some investigation",
    "complex": "Issue involves multiple components",
    "requires_human": "Issue requires architectural or business decision",
}


class FailureClassifier:
    def classify(
        self,
        error_message: str | None,
        stack_trace: str | None = None,
        files: list[str] | None = None,
        flag_types: list[str] | None = None,
    ) -> dict:
        msg = (error_message or "").lower()
        trace = (stack_trace or "").lower()

        category, source = self._category(msg, trace, flag_types or [])
        complexity = self._complexity(msg, files or [])
        confidence = self._confidence(category, complexity, msg, source)

        reasons = [_CATEGORY_REASONS[category], _COMPLEXITY_REASONS[complexity]]
        if source == "flags":
            reasons.insert(0, "No error text; classified from red flags")
        return {
            "category": category,
            "complexity": complexity,
            "confidence": confidence,
            "reasoning": ". ".join(reasons),
        }

    @staticmethod
    def _category(msg: str, trace: str, flag_types: list[str]) -> tuple[str, str]:
        text = f"{msg}\n{trace}"
        for category, keywords in _CATEGORY_KEYWORDS:
            if any(k in text for k in keywords):
                return category, "text"
        if not msg.strip():
            for flag_type in flag_types:
                if flag_type in _FLAG_CATEGORY:
                    return _FLAG_CATEGORY[flag_type], "flags"
        return "logic", "default"

    @staticmethod
    def _complexity(msg: str, files: list[str]) -> str:
        if any(k in msg for k in _HUMAN_KEYWORDS):
            return "requires_human"
        if len(files) <= 1 and any(k in msg for k in _SIMPLE_KEYWORDS):
            return "simple"
        if len(files) > 3:
            return "complex"
        return "moderate"

    @staticmethod
    def _confidence(category: str, complexity: str, msg: str, source: str) -> float:
        confidence = 0.5
        if category == "syntax" and "syntaxerror" in msg:
            confidence += 0.4
        if category == "integration" and ("modulenotfounderror" in msg or "404" in msg):
            confidence += 0.3
        if category == "environment" and "permission denied" in msg:
            confidence += 0.3
        if complexity == "simple" and len(msg) < 100:
            confidence += 0.2
        if source == "flags":
            confidence -= 0.1
        return round(min(max(confidence, 0.0), 1.0), 2)
