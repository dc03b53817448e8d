"""
QA Verification Pipeline
Red flag detection — deception signatures in an evidence set.

Five rules, evaluated independently (one evidence set may trip several):

    missing_evidence   critical  passed, but a required artifact is absent/unreadable
    inconsistent       high      screenshot and console disagree; failing HTTP status
                                 or absent expected element on a reported pass
    tool_execution     critical  expected tool / network call absent, or a tool
                                 call that never returned
    timing             medium    faster than the per-type floor (historical outliers
                                 add medium/low flags)
    coverage           high      unit/integration pass with no coverage gain

The detector is stateless: it reads the evidence dict, the artifact files and
the historical durations handed to it, and returns plain flag dicts. Persisting
them is the red-flag service's job.
"""

import logging
import re
import statistics

from qa_pipeline.config import REQUIRED_ARTIFACTS, TIMING_FLOORS_MS
from qa_pipeline.core.exceptions import AnalysisError
from qa_pipeline.verification.artifacts import ArtifactStore
from qa_pipeline.verification.evidence_analyzer import EvidenceAnalyzer

logger = logging.getLogger(__name__)

MIN_HISTORY_SAMPLES = 3
OUTLIER_SIGMA = 2.5
MIN_COVERAGE_GAIN_LINES = {"unit": 5, "integration": 1}

_EXPECTED_ERROR_RE = re.compile(
    r"error handling|expected error|should fail|expect.*throw|negative test",
    re.IGNORECASE,
)
_TOOL_NAME_RE = re.compile(r"mcp__[\w-]+__[\w-]+")


def _flag(flag_type, severity, description, proof):
    return {
        "flag_type": flag_type,
        "severity": severity,
        "description": description,
        "proof": proof,
    }


class RedFlagDetector:
    """Scans one evidence set for signs the reported result was fabricated."""

    def __init__(
        self,
        store: ArtifactStore,
        required_artifacts=REQUIRED_ARTIFACTS,
        timing_floors=TIMING_FLOORS_MS,
    ):
        self.store = store
        self.analyzer = EvidenceAnalyzer(store)
        self.required_artifacts = required_artifacts
        self.timing_floors = timing_floors

    def detect(self, evidence: dict, history: list[int] | None = None) -> list[dict]:
        """Run every rule and return the combined flag list."""
        flags: list[dict] = []
        flags.extend(self.detect_missing_evidence(evidence))
        flags.extend(self.detect_inconsistent_evidence(evidence))
        flags.extend(self.detect_tool_execution(evidence))
        flags.extend(self.detect_timing_anomalies(evidence, history))
        flags.extend(self.detect_coverage_unchanged(evidence))
        logger.info(
            "Red flag scan for %s: %d flag(s)", evidence.get("test_id"), len(flags),
            extra={"test_id": evidence.get("test_id"), "epic_id": evidence.get("epic_id")},
        )
        return flags

    @staticmethod
    def detect_no_evidence(test_id: str, epic_id: str, test_type: str | None = None) -> list[dict]:
        """Flag a test that reported a result without any evidence row at all."""
        return [_flag(
            "missing_evidence",
            "critical",
            f"No evidence recorded for test {test_id} - result cannot be trusted",
            {"test_id": test_id, "epic_id": epic_id, "test_type": test_type, "evidence_count": 0},
        )]

    # ── Missing evidence ─────────────────────────────────────────────────

    def detect_missing_evidence(self, evidence: dict) -> list[dict]:
        if evidence.get("pass_fail") != "pass":
            return []
        test_type = evidence.get("test_type")
        name = evidence.get("test_name") or evidence.get("test_id")
        flags = []
        for field in self.required_artifacts.get(test_type, ()):
            path = evidence.get(field)
            if not path:
                flags.append(_flag(
                    "missing_evidence", "critical",
                    f'Test "{name}" passed but required {field} is missing',
                    {"test_type": test_type, "missing": field},
                ))
                continue
            try:
                self.store.read_bytes(field, path, limit=1)
            except AnalysisError as exc:
                flags.append(_flag(
                    "missing_evidence", "critical",
                    f'Test "{name}" passed but {field} is unreadable',
                    {"test_type": test_type, "missing": field, "path": path, "reason": exc.reason},
                ))
                continue
            if field == "console_logs":
                flags.extend(self._empty_console(evidence, name, path))
        return flags

    def _empty_console(self, evidence, name, path) -> list[dict]:
        try:
            entries = self.store.load_console_logs(path)
        except AnalysisError as exc:
            return [_flag(
                "missing_evidence", "critical",
                f'Test "{name}" passed but console log could not be parsed',
                {"missing": "console_logs", "path": path, "reason": exc.reason},
            )]
        if entries:
            return []
        return [_flag(
            "missing_evidence", "critical",
            f'Test "{name}" passed but console log is empty - browser likely never ran',
            {"test_type": evidence.get("test_type"), "path": path, "entries": 0},
        )]

    # ── Inconsistent evidence ────────────────────────────────────────────

    def detect_inconsistent_evidence(self, evidence: dict) -> list[dict]:
        name = evidence.get("test_name") or ""
        flags = []
        expects_errors = bool(_EXPECTED_ERROR_RE.search(name))

        if evidence.get("screenshot_after") and evidence.get("console_logs") and not expects_errors:
            shot = self.analyzer.analyze_screenshot(evidence)
            console = self.analyzer.analyze_console(evidence.get("console_logs"))
            if shot["degraded"] or console["degraded"]:
                pass
            elif shot["has_error_ui"] and console["error_count"] == 0:
                flags.append(_flag(
                    "inconsistent", "high",
                    f'Test "{name}": screenshot shows an error state but the console has no errors',
                    {"screenshot": shot, "console_error_count": 0},
                ))
            elif console["error_count"] > 0 and not shot["has_error_ui"]:
                flags.append(_flag(
                    "inconsistent", "high",
                    f'Test "{name}": console logged {console["error_count"]} error(s) '
                    f"but the screenshot shows no error state",
                    {"screenshot": shot, "console_error_count": console["error_count"]},
                ))

        if evidence.get("pass_fail") != "pass":
            return flags

        if evidence.get("http_response"):
            response = self.analyzer.parse_http("http_response", evidence["http_response"])
            status = _status_of(response)
            if status is not None and status >= 400:
                flags.append(_flag(
                    "inconsistent", "high",
                    f'Test "{name}" passed but the HTTP response status was {status}',
                    {"status": status, "path": evidence["http_response"]},
                ))

        expected_elements = (evidence.get("metadata") or {}).get("expected_elements") or []
        if expected_elements and evidence.get("dom_snapshot"):
            try:
                dom = self.store.load_dom(evidence["dom_snapshot"])
            except AnalysisError as exc:
                logger.warning("Expected-element check skipped: %s", exc)
            else:
                absent = [el for el in expected_elements if el not in dom]
                if absent:
                    flags.append(_flag(
                        "inconsistent", "high",
                        f'Test "{name}" passed but expected element(s) are absent from the DOM: '
                        f'{", ".join(absent)}',
                        {"absent_elements": absent},
                    ))
        return flags

    # ── Tool execution ───────────────────────────────────────────────────

    def detect_tool_execution(self, evidence: dict) -> list[dict]:
        if evidence.get("pass_fail") != "pass":
            return []
        name = evidence.get("test_name") or ""
        metadata = evidence.get("metadata") or {}
        calls = metadata.get("tool_calls") or []
        flags = []

        expected = set(metadata.get("expected_tools") or []) | set(_TOOL_NAME_RE.findall(name))
        called = {c.get("name") or c.get("tool") for c in calls if isinstance(c, dict)}
        missing_tools = sorted(expected - called)
        if missing_tools:
            flags.append(_flag(
                "tool_execution", "critical",
                f'Test "{name}" passed but expected tool(s) were never called: {", ".join(missing_tools)}',
                {"expected_tools": sorted(expected), "called_tools": sorted(t for t in called if t)},
            ))

        unanswered = [
            c.get("name") or c.get("tool") for c in calls
            if isinstance(c, dict) and c.get("result") is None and not c.get("error")
        ]
        if unanswered:
            flags.append(_flag(
                "tool_execution", "critical",
                f'Test "{name}" passed but {len(unanswered)} tool call(s) never returned a result',
                {"calls_without_result": unanswered},
            ))

        expected_requests = metadata.get("expected_requests") or []
        if expected_requests:
            urls = self._trace_urls(evidence)
            absent = []
            for req in expected_requests:
                needle = req.get("url") if isinstance(req, dict) else str(req)
                if needle and not any(needle in u for u in urls):
                    absent.append(needle)
            if absent:
                flags.append(_flag(
                    "tool_execution", "critical",
                    f'Test "{name}" passed but expected network call(s) are absent from the trace: '
                    f'{", ".join(absent)}',
                    {"expected_requests": expected_requests, "observed_urls": urls[:50]},
                ))
        return flags

    def _trace_urls(self, evidence) -> list[str]:
        path = evidence.get("network_trace")
        if not path:
            return []
        try:
            return [r["url"] for r in self.store.load_network_trace(path)]
        except AnalysisError as exc:
            logger.warning("Network trace unreadable for tool check: %s", exc)
            return []

    # ── Timing ───────────────────────────────────────────────────────────

    def detect_timing_anomalies(self, evidence: dict, history: list[int] | None = None) -> list[dict]:
        duration = evidence.get("duration_ms")
        if evidence.get("pass_fail") != "pass" or duration is None:
            return []
        test_type = evidence.get("test_type")
        name = evidence.get("test_name") or evidence.get("test_id")
        flags = []

        floor = self.timing_floors.get(test_type)
        if floor is not None and duration < floor:
            flags.append(_flag(
                "timing", "medium",
                f'Test "{name}" completed in {duration}ms (minimum plausible for {test_type} is {floor}ms)',
                {"duration_ms": duration, "floor_ms": floor, "test_type": test_type},
            ))

        samples = [h for h in (history or []) if h is not None]
        if len(samples) >= MIN_HISTORY_SAMPLES:
            avg = statistics.fmean(samples)
            sigma = statistics.pstdev(samples)
            if duration < avg / 2:
                severity = "medium" if duration < avg - OUTLIER_SIGMA * sigma else "low"
                flags.append(_flag(
                    "timing", severity,
                    f'Test "{name}" ran in {duration}ms, under half its historical average of {avg:.0f}ms',
                    {"duration_ms": duration, "historical_avg_ms": round(avg, 1),
                     "historical_stddev_ms": round(sigma, 1), "samples": len(samples)},
                ))
        return flags

    # ── Coverage ─────────────────────────────────────────────────────────

    def detect_coverage_unchanged(self, evidence: dict) -> list[dict]:
        test_type = evidence.get("test_type")
        if evidence.get("pass_fail") != "pass" or test_type not in MIN_COVERAGE_GAIN_LINES:
            return []
        if not self.store.exists(evidence.get("coverage_report")):
            return []  # absent or unreadable: detect_missing_evidence
        name = evidence.get("test_name") or evidence.get("test_id")
        baseline = (evidence.get("metadata") or {}).get("coverage_baseline")
        try:
            coverage = self.store.load_coverage(evidence["coverage_report"], baseline)
        except AnalysisError as exc:
            return [_flag(
                "missing_evidence", "critical",
                f'Test "{name}" passed but its coverage report could not be parsed',
                {"test_type": test_type, "missing": "coverage_report",
                 "path": evidence["coverage_report"], "reason": exc.reason},
            )]

        lines_delta = coverage["lines_delta"]
        delta = lines_delta if lines_delta is not None else coverage["change"]
        if delta is None:
            return []
        proof = {"before": coverage["before"], "after": coverage["after"], "diff": delta}

        if delta <= 0:
            verb = "unchanged" if delta == 0 else "decreased"
            return [_flag(
                "coverage", "high",
                f'Test "{name}" passed but coverage {verb} - tests did not run',
                proof,
            )]
        minimum = MIN_COVERAGE_GAIN_LINES[test_type]
        if lines_delta is not None and lines_delta < minimum:
            return [_flag(
                "coverage", "medium",
                f'Test "{name}" coverage increased by only {lines_delta} line(s) '
                f"(expected at least {minimum} for a {test_type} test)",
                proof,
            )]
        return []


def _status_of(response: dict | None):
    if not response:
        return None
    status = response.get("status", response.get("status_code", response.get("statusCode")))
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


# ── Summary ──────────────────────────────────────────────────────────────


def summarize(flags: list[dict]) -> dict:
    """Counts, verdict and a plain-language recommendation for a flag list."""
    counts = {s: 0 for s in ("critical", "high", "medium", "low")}
    for f in flags:
        counts[f["severity"]] = counts.get(f["severity"], 0) + 1

    if counts["critical"]:
        verdict = "fail"
        first = next(f for f in flags if f["severity"] == "critical")
        recommendation = (
            f"VERIFICATION FAILED: {counts['critical']} critical red flag(s) detected. "
            f"{first['description']}"
        )
    elif counts["high"]:
        verdict = "review"
        recommendation = (
            f"MANUAL REVIEW REQUIRED: {counts['high']} high-severity red flag(s) detected."
        )
    elif flags:
        verdict = "pass"
        recommendation = f"VERIFICATION PASSED (with {len(flags)} minor flag(s))."
    else:
        verdict = "pass"
        recommendation = "VERIFICATION PASSED: No red flags detected."

    return {"total_flags": len(flags), **counts, "verdict": verdict, "recommendation": recommendation}
