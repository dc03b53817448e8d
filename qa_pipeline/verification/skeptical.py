"""
Skeptical analysis: patterns that are individually plausible but, taken
together with a reported pass, suggest the test never really ran.

Concerns are reported as-is; the same underlying problem may surface here
and in red-flag detection, and the verifier scores both. Checks skip any
artifact the analyzer reports as degraded (unreadable).
"""

import logging

from qa_pipeline.config import REQUIRED_ARTIFACTS, TIMING_FLOORS_MS
from qa_pipeline.models.evidence import ARTIFACT_FIELDS
from qa_pipeline.verification.evidence_analyzer import EvidenceAnalyzer

logger = logging.getLogger(__name__)

DEFAULT_FLOOR_MS = 50


def _pattern(pattern_type, severity, description, evidence=None):
    return {
        "type": pattern_type,
        "severity": severity,
        "description": description,
        "evidence": evidence or {},
    }


class SkepticalAnalyzer:
    def __init__(
        self,
        analyzer: EvidenceAnalyzer,
        required_artifacts=REQUIRED_ARTIFACTS,
        timing_floors=TIMING_FLOORS_MS,
    ):
        self.analyzer = analyzer
        self.required_artifacts = required_artifacts
        self.timing_floors = timing_floors

    def analyze(self, evidence: dict, red_flags: list[dict] | None = None) -> dict:
        checks = (
            self._too_perfect,
            self._too_fast,
            self._missing_artifacts,
            self._zero_network,
            self._zero_dom_changes,
            lambda ev: self._red_flags_ignored(ev, red_flags or []),
            self._inconsistent_timing,
            self._empty_logs,
        )
        patterns = []
        for check in checks:
            try:
                found = check(evidence)
            except Exception:
                logger.exception("Skeptical check degraded")
                found = None
            if found:
                patterns.append(found)

        return {
            "suspicious": bool(patterns),
            "concerns": [p["description"] for p in patterns],
            "patterns": patterns,
            "recommend_manual_review": any(p["severity"] == "high" for p in patterns),
        }

    def _too_perfect(self, evidence):
        if not evidence.get("coverage_report"):
            return None
        baseline = (evidence.get("metadata") or {}).get("coverage_baseline")
        coverage = self.analyzer.analyze_coverage(evidence["coverage_report"], baseline)
        after = coverage["after"]
        if not after or after["percentage"] < 100:
            return None
        errors = warnings = 0
        if evidence.get("console_logs"):
            console = self.analyzer.analyze_console(evidence["console_logs"])
            errors, warnings = console["error_count"], console["warning_count"]
        if errors or warnings:
            return None
        return _pattern(
            "too_perfect", "medium",
            "Results are suspiciously perfect (no errors, no warnings, 100% coverage)",
            {"errors": 0, "warnings": 0, "coverage": after["percentage"]},
        )

    def _too_fast(self, evidence):
        duration = evidence.get("duration_ms")
        if duration is None:
            return None
        test_type = evidence.get("test_type")
        floor = self.timing_floors.get(test_type, DEFAULT_FLOOR_MS)
        if duration >= floor:
            return None
        return _pattern(
            "too_fast", "high",
            f"Test completed in {duration}ms (expected >= {floor}ms for {test_type} test)",
            {"duration_ms": duration, "expected_minimum_ms": floor, "test_type": test_type},
        )

    def _missing_artifacts(self, evidence):
        if not any(evidence.get(f) for f in ARTIFACT_FIELDS):
            return _pattern(
                "missing_artifacts", "high",
                "Test has NO artifacts collected - likely not actually run",
                {"test_type": evidence.get("test_type")},
            )
        required = self.required_artifacts.get(evidence.get("test_type"), ())
        missing = [f for f in required if not evidence.get(f)]
        if not missing:
            return None
        return _pattern(
            "missing_artifacts", "medium",
            f"Missing expected artifacts: {', '.join(missing)}",
            {"missing": missing},
        )

    def _zero_network(self, evidence):
        if evidence.get("test_type") != "ui" or not evidence.get("network_trace"):
            return None
        network = self.analyzer.analyze_network(evidence["network_trace"])
        if network["degraded"] or network["request_count"] > 0:
            return None
        return _pattern(
            "zero_network", "high",
            "UI test has no network activity (likely not actually run)",
            {"request_count": 0},
        )

    def _zero_dom_changes(self, evidence):
        if evidence.get("test_type") != "ui":
            return None
        if not (evidence.get("dom_snapshot_before") and evidence.get("dom_snapshot")):
            return None
        dom = self.analyzer.analyze_dom(evidence["dom_snapshot_before"], evidence["dom_snapshot"])
        if dom["degraded"] or dom["change_count"] > 0:
            return None
        return _pattern(
            "zero_dom_changes", "medium",
            "UI test has no DOM changes (likely not actually run)",
            {"change_count": 0},
        )

    @staticmethod
    def _red_flags_ignored(evidence, red_flags):
        if evidence.get("pass_fail") != "pass":
            return None
        serious = [
            f for f in red_flags
            if f.get("severity") in ("critical", "high") and not f.get("resolved")
        ]
        if not serious:
            return None
        return _pattern(
            "red_flags_ignored", "high",
            f"Test passed but {len(serious)} unresolved high/critical red flag(s) were detected",
            {"flags": [{"type": f.get("flag_type"), "severity": f.get("severity")} for f in serious]},
        )

    def _inconsistent_timing(self, evidence):
        duration = evidence.get("duration_ms")
        if duration is None or not evidence.get("network_trace"):
            return None
        network = self.analyzer.analyze_network(evidence["network_trace"])
        network_time = network["total_response_time"]
        if network["degraded"] or network_time <= duration:
            return None
        return _pattern(
            "inconsistent_timing", "medium",
            f"Network requests took {network_time:.0f}ms but total test duration was {duration}ms",
            {"duration_ms": duration, "network_time_ms": network_time,
             "request_count": network["request_count"]},
        )

    def _empty_logs(self, evidence):
        if evidence.get("test_type") != "ui" or not evidence.get("console_logs"):
            return None
        console = self.analyzer.analyze_console(evidence["console_logs"])
        if console["degraded"] or console["total"] > 0:
            return None
        return _pattern(
            "empty_logs", "low",
            "UI test has no console output (suspicious)",
            {"total_logs": 0},
        )
