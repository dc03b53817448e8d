"""
QA Verification Pipeline
Root-cause analysis over one failed (or untrusted) evidence set.

Heuristic: the classifier buckets the failure; the analyzer turns the bucket
plus the concrete error text into a root-cause sentence, a symptom list, a
recommended strategy and an estimated number of attempts.
"""

import re

from qa_pipeline.rca.classifier import FailureClassifier

_JS_FRAME_RE = re.compile(r"at .+? \((.+?):\d+:\d+\)")
_PY_FRAME_RE = re.compile(r'File "(.+?)", line \d+')
_MODULE_RE = re.compile(r"(?:Cannot find module|No module named) '([^']+)'", re.IGNORECASE)

_DIFFICULTY = {"simple": 1, "moderate": 2, "complex": 3, "requires_human": 0}

_CATEGORY_DEFAULT_STRATEGY = {
    "syntax": "syntax_fix",
    "integration": "import_fix",
    "environment": "config_fix",
    "logic": "refactor",
}


def files_from_trace(stack_trace: str | None) -> list[str]:
    if not stack_trace:
        return []
    seen = []
    for path in _JS_FRAME_RE.findall(stack_trace) + _PY_FRAME_RE.findall(stack_trace):
        if path not in seen:
            seen.append(path)
    return seen


class RootCauseAnalyzer:
    def __init__(self, classifier: FailureClassifier | None = None):
        self.classifier = classifier or FailureClassifier()

    def analyze(
        self,
        evidence: dict | None,
        red_flags: list[dict],
        previous_attempts: list[dict] | None = None,
    ) -> dict:
        evidence = evidence or {}
        previous_attempts = previous_attempts or []
        error_message = evidence.get("error_message") or ""
        stack_trace = evidence.get("stack_trace")
        files = files_from_trace(stack_trace)
        flag_types = sorted({f["flag_type"] for f in red_flags if not f.get("resolved")})

        classification = self.classifier.classify(error_message, stack_trace, files, flag_types)
        root_cause = self._root_cause(error_message, classification["category"], red_flags,
                                      previous_attempts)
        return {
            "test_id": evidence.get("test_id"),
            "epic_id": evidence.get("epic_id"),
            "evidence_id": evidence.get("id"),
            "category": classification["category"],
            "complexity": classification["complexity"],
            "confidence": classification["confidence"],
            "root_cause": root_cause,
            "symptoms": self._symptoms(evidence, red_flags),
            "diagnosis_reasoning": classification["reasoning"],
            "recommended_strategy": self.recommend_strategy(root_cause, classification["category"]),
            "estimated_fix_difficulty": _DIFFICULTY.get(classification["complexity"], 2),
            "files_involved": files,
            "flag_types": flag_types,
            "error_pattern": error_message[:500] or None,
        }

    @staticmethod
    def _root_cause(error_message, category, red_flags, previous_attempts) -> str:
        msg = error_message.lower()
        if category == "syntax":
            if "unexpected token" in msg:
                return "Syntax error: Unexpected token in code"
            if "missing semicolon" in msg:
                return "Syntax error: Missing semicolon"
            return "Syntax error in code"

        if category == "integration":
            match = _MODULE_RE.search(error_message)
            if match:
                return f"Missing module dependency: {match.group(1)}"
            if "404" in msg:
                return "API endpoint not found (404)"
            if "connection refused" in msg:
                return "Service not running or connection refused"
            if not msg and any(f["flag_type"] == "tool_execution" for f in red_flags):
                return "Expected tool or network call never executed"
            return "Integration failure with external dependency"

        if category == "environment":
            if "permission denied" in msg:
                return "Permission denied: Insufficient file or resource permissions"
            if "environment variable" in msg:
                return "Missing or invalid environment variable"
            if "undefined is not" in msg:
                return "Variable or property accessed before initialization"
            if not msg and red_flags:
                return "Test environment did not capture evidence of execution"
            return "Environment configuration issue"

        if previous_attempts:
            return (
                f"Logic error: Previous {len(previous_attempts)} fix(es) "
                "did not address underlying issue"
            )
        if not msg and red_flags:
            return "Reported result is not supported by the captured evidence"
        return "Logic error: Test assertion failed due to incorrect behavior"

    @staticmethod
    def _symptoms(evidence: dict, red_flags: list[dict]) -> list[str]:
        symptoms = []
        if evidence.get("error_message"):
            symptoms.append(f"Error: {evidence['error_message'][:100]}")
        if evidence.get("screenshot_after"):
            symptoms.append("Visual state captured in screenshot")
        if evidence.get("network_trace"):
            symptoms.append("Network activity recorded in trace")
        for flag in red_flags:
            if not flag.get("resolved"):
                symptoms.append(f"Red flag ({flag['severity']}): {flag['description']}")
        return symptoms

    @staticmethod
    def recommend_strategy(root_cause: str, category: str) -> str:
        rc = root_cause.lower()
        if "missing module" in rc:
            return "dependency_add"
        if "permission denied" in rc:
            return "permission_fix"
        if "environment variable" in rc:
            return "env_var_add"
        if "unexpected token" in rc:
            return "syntax_fix"
        if "missing semicolon" in rc:
            return "typo_correction"
        if "404" in rc:
            return "api_update"
        return _CATEGORY_DEFAULT_STRATEGY.get(category, "refactor")
