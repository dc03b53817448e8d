"""
Cross-validation of independent evidence sources.

Six checks compare artifacts that should agree with each other. A check
whose inputs are absent is skipped (omitted from the result list, never
penalized). A check that raises internally, or whose input the analyzer
reports as degraded (unreadable), resolves to ``matched=True`` with a
"Validation skipped" description.

    screenshot_vs_console   error UI with a clean console            high
    http_vs_schema          response lacks minimal shape             medium
    duration_vs_historical  >50% off the rolling average             medium (>100% high)
    coverage_vs_scope       unit/integration coverage barely moved   low
    network_vs_ui           network activity without DOM change      medium
                            (or the reverse)
    error_vs_result         "pass" with critical console errors      high
"""

import logging
import statistics

from qa_pipeline.verification.evidence_analyzer import EvidenceAnalyzer

logger = logging.getLogger(__name__)

MIN_COVERAGE_CHANGE = {"unit": 0.5, "integration": 0.5}
DEVIATION_MEDIUM = 0.5
DEVIATION_HIGH = 1.0


def _result(check_type, matched, description, evidence=None, severity=None):
    result = {
        "type": check_type,
        "matched": matched,
        "description": description,
        "evidence": evidence or {},
    }
    if not matched and severity:
        result["severity"] = severity
    return result


class CrossValidator:
    """Runs the cross-source consistency checks for one evidence set."""

    def __init__(self, analyzer: EvidenceAnalyzer):
        self.analyzer = analyzer

    def validate(self, evidence: dict, history: list[int] | None = None) -> list[dict]:
        checks = (
            ("screenshot_vs_console", self._screenshot_vs_console),
            ("http_vs_schema", self._http_vs_schema),
            ("duration_vs_historical", lambda ev: self._duration_vs_historical(ev, history)),
            ("coverage_vs_scope", self._coverage_vs_scope),
            ("network_vs_ui", self._network_vs_ui),
            ("error_vs_result", self._error_vs_result),
        )
        results = []
        for check_type, fn in checks:
            try:
                outcome = fn(evidence)
            except Exception as exc:
                logger.exception("Cross-validation %s degraded", check_type)
                outcome = _result(check_type, True, f"Validation skipped: {exc}")
            if outcome is not None:
                results.append(outcome)
        return results

    def _screenshot_vs_console(self, evidence):
        if not (evidence.get("screenshot_after") and evidence.get("console_logs")):
            return None
        shot = self.analyzer.analyze_screenshot(evidence)
        console = self.analyzer.analyze_console(evidence["console_logs"])
        if shot["degraded"] or console["degraded"]:
            return _result(
                "screenshot_vs_console", True, "Validation skipped: screenshot or console log unreadable",
            )
        mismatch = shot["has_error_ui"] and console["error_count"] == 0
        return _result(
            "screenshot_vs_console",
            not mismatch,
            "Screenshot shows error UI but console has no errors"
            if mismatch else "Screenshot and console logs are consistent",
            {"screenshot_error_ui": shot["has_error_ui"], "error_text": shot["error_text"],
             "console_error_count": console["error_count"]},
            "high",
        )

    def _http_vs_schema(self, evidence):
        if evidence.get("test_type") != "api" or not evidence.get("http_response"):
            return None
        response = self.analyzer.parse_http("http_response", evidence["http_response"])
        if response is None:
            return _result("http_vs_schema", True, "Validation skipped: HTTP response unreadable")

        problems = []
        status = response.get("status", response.get("status_code"))
        if not isinstance(status, int) or not 100 <= status <= 599:
            problems.append(f"status {status!r} is not a valid HTTP status")
        if "body" not in response and "headers" not in response:
            problems.append("response has neither body nor headers")

        if evidence.get("http_request"):
            request = self.analyzer.parse_http("http_request", evidence["http_request"])
            if request is not None:
                for key in ("method", "url"):
                    if not request.get(key):
                        problems.append(f"request is missing {key}")

        return _result(
            "http_vs_schema",
            not problems,
            "HTTP exchange matches expected structure"
            if not problems else "HTTP exchange malformed: " + "; ".join(problems),
            {"response_keys": sorted(response.keys()), "problems": problems},
            "medium",
        )

    def _duration_vs_historical(self, evidence, history):
        duration = evidence.get("duration_ms")
        if duration is None or not evidence.get("test_name"):
            return None
        samples = [h for h in (history or []) if h is not None]
        if not samples:
            return _result(
                "duration_vs_historical", True,
                "No historical data available for comparison", {"duration_ms": duration},
            )
        avg = statistics.fmean(samples)
        if avg <= 0:
            return _result(
                "duration_vs_historical", True,
                "Historical average is zero; comparison skipped", {"duration_ms": duration},
            )
        deviation = abs(duration - avg) / avg
        matched = deviation <= DEVIATION_MEDIUM
        return _result(
            "duration_vs_historical",
            matched,
            f"Test duration {duration}ms is within expected range (avg: {avg:.0f}ms)"
            if matched else
            f"Test duration {duration}ms vs historical avg {avg:.0f}ms ({deviation * 100:.0f}% deviation)",
            {"actual": duration, "historical": round(avg, 1), "deviation_pct": round(deviation * 100),
             "samples": len(samples)},
            "high" if deviation > DEVIATION_HIGH else "medium",
        )

    def _coverage_vs_scope(self, evidence):
        if not evidence.get("coverage_report"):
            return None
        test_type = evidence.get("test_type")
        baseline = (evidence.get("metadata") or {}).get("coverage_baseline")
        coverage = self.analyzer.analyze_coverage(evidence["coverage_report"], baseline)
        if coverage["degraded"]:
            return _result("coverage_vs_scope", True, "Validation skipped: coverage report unreadable")
        change = coverage["change"]
        if change is None:
            return _result("coverage_vs_scope", True, "No coverage baseline; comparison skipped")
        expected = MIN_COVERAGE_CHANGE.get(test_type, 0.0)
        matched = change >= expected
        return _result(
            "coverage_vs_scope",
            matched,
            f"Coverage changed {change:.2f}% as expected for {test_type} test"
            if matched else
            f"Coverage changed {change:.2f}% but expected >= {expected}% for {test_type} test",
            {"actual": change, "expected": expected, "test_type": test_type},
            "low",
        )

    def _network_vs_ui(self, evidence):
        if evidence.get("test_type") != "ui":
            return None
        if not (evidence.get("network_trace") and evidence.get("dom_snapshot")
                and evidence.get("dom_snapshot_before")):
            return None
        network = self.analyzer.analyze_network(evidence["network_trace"])
        dom = self.analyzer.analyze_dom(evidence["dom_snapshot_before"], evidence["dom_snapshot"])
        if network["degraded"] or dom["degraded"]:
            return _result(
                "network_vs_ui", True, "Validation skipped: network trace or DOM snapshot unreadable",
            )
        has_network = network["request_count"] > 0
        has_dom = dom["change_count"] > 0
        matched = has_network == has_dom
        return _result(
            "network_vs_ui",
            matched,
            "Network activity and UI changes are consistent"
            if matched else
            f"Inconsistent: {network['request_count']} network request(s) but "
            f"{dom['change_count']} DOM change(s)",
            {"network_requests": network["request_count"], "dom_changes": dom["change_count"]},
            "medium",
        )

    def _error_vs_result(self, evidence):
        if not evidence.get("console_logs"):
            return None
        console = self.analyzer.analyze_console(evidence["console_logs"])
        mismatch = evidence.get("pass_fail") == "pass" and bool(console["critical_errors"])
        return _result(
            "error_vs_result",
            not mismatch,
            f"Test passed but has {len(console['critical_errors'])} critical error(s) in logs"
            if mismatch else "Error logs match test result",
            {"test_result": evidence.get("pass_fail"), "error_count": console["error_count"],
             "critical_errors": console["critical_errors"]},
            "high",
        )
