"""
Per-artifact signal extraction.

Each ``analyze_*`` method turns one artifact into a plain dict of signals.
Nothing here renders a verdict. When an artifact cannot be read the method
logs the AnalysisError and returns the neutral default with
``degraded=True``; checks downstream skip a degraded input rather than read
its zeros as an observation.
"""

import logging
import os
import re
from collections import Counter

from qa_pipeline.core.exceptions import AnalysisError
from qa_pipeline.verification.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
SIGNIFICANT_DOM_CHANGES = 10

_CRITICAL_MARKERS = ("fatal", "uncaught", "unhandled rejection", "unhandled promise")
_ERROR_UI_MARKERS = ("error", "failed", "failure", "exception", "crash")

_LOG_PATTERNS = {
    "network_failure": re.compile(r"net::|network|failed to fetch|econnrefused", re.IGNORECASE),
    "timeout": re.compile(r"timeout|timed out", re.IGNORECASE),
    "not_found": re.compile(r"\b404\b|not found", re.IGNORECASE),
    "null_reference": re.compile(r"undefined|null|cannot read propert", re.IGNORECASE),
    "auth_failure": re.compile(r"\b401\b|\b403\b|unauthori[sz]ed|forbidden", re.IGNORECASE),
}

_TAG_RE = re.compile(r"<([a-zA-Z][\w-]*)")


def _screenshot_default(degraded=False):
    return {
        "has_error_ui": False,
        "success_indicators": [],
        "error_text": None,
        "source": None,
        "degraded": degraded,
    }


def _console_default(degraded=False):
    return {
        "error_count": 0,
        "warning_count": 0,
        "info_count": 0,
        "total": 0,
        "has_uncaught_errors": False,
        "critical_errors": [],
        "patterns": [],
        "degraded": degraded,
    }


def _network_default(degraded=False):
    return {
        "request_count": 0,
        "failed_requests": 0,
        "slow_requests": 0,
        "server_errors": 0,
        "auth_failures": 0,
        "average_response_time": 0.0,
        "total_response_time": 0.0,
        "urls": [],
        "degraded": degraded,
    }


def _dom_default(degraded=False):
    return {
        "change_count": 0,
        "nodes_added": 0,
        "nodes_removed": 0,
        "significant": False,
        "degraded": degraded,
    }


def _coverage_default(degraded=False):
    return {"before": None, "after": None, "lines_delta": None, "change": None, "proportional": True,
            "degraded": degraded}


class EvidenceAnalyzer:
    """Extracts signal bags from evidence artifacts."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    # ── Screenshot ───────────────────────────────────────────────────────

    def analyze_screenshot(self, evidence: dict, field: str = "screenshot_after") -> dict:
        """Error/success hints for a screenshot.

        Pixel analysis belongs to the capture side; the producer records its
        findings under ``metadata["screenshot"]``. Without them the file name
        is the only hint available.
        """
        path = evidence.get(field)
        result = _screenshot_default()
        try:
            if not self.store.exists(path):
                raise AnalysisError(field, path, "file not found")
            hints = (evidence.get("metadata") or {}).get("screenshot") or {}
            if "contains_error" in hints:
                result["has_error_ui"] = bool(hints["contains_error"])
                result["error_text"] = hints.get("error_text")
                result["source"] = "metadata"
            else:
                name = os.path.basename(path).lower()
                result["has_error_ui"] = any(m in name for m in _ERROR_UI_MARKERS)
                result["source"] = "filename"
            result["success_indicators"] = list(hints.get("success_indicators") or [])
            if not result["success_indicators"] and "success" in os.path.basename(path).lower():
                result["success_indicators"] = ["success"]
        except AnalysisError as exc:
            logger.warning("Screenshot analysis degraded: %s", exc)
            return _screenshot_default(degraded=True)
        return result

    # ── Console logs ─────────────────────────────────────────────────────

    def analyze_console(self, path: str | None) -> dict:
        try:
            entries = self.store.load_console_logs(path)
        except AnalysisError as exc:
            logger.warning("Console log analysis degraded: %s", exc)
            return _console_default(degraded=True)

        result = _console_default()
        levels = Counter(e["level"] for e in entries)
        result["error_count"] = levels.get("error", 0)
        result["warning_count"] = levels.get("warning", 0)
        result["info_count"] = len(entries) - result["error_count"] - result["warning_count"]
        result["total"] = len(entries)

        errors = [e["message"] for e in entries if e["level"] == "error"]
        result["has_uncaught_errors"] = any("uncaught" in m.lower() for m in errors)
        result["critical_errors"] = [
            m for m in errors if any(marker in m.lower() for marker in _CRITICAL_MARKERS)
        ]
        result["patterns"] = sorted(
            name for name, rx in _LOG_PATTERNS.items() if any(rx.search(m) for m in errors)
        )
        return result

    # ── Network trace ────────────────────────────────────────────────────

    def analyze_network(self, path: str | None) -> dict:
        try:
            trace = self.store.load_network_trace(path)
        except AnalysisError as exc:
            logger.warning("Network trace analysis degraded: %s", exc)
            return _network_default(degraded=True)

        result = _network_default()
        statuses = [r["status_code"] for r in trace if r["status_code"] is not None]
        times = [r["response_time"] for r in trace if r["response_time"] is not None]
        result["request_count"] = len(trace)
        result["failed_requests"] = sum(1 for s in statuses if 400 <= s < 600)
        result["server_errors"] = sum(1 for s in statuses if 500 <= s < 600)
        result["auth_failures"] = sum(1 for s in statuses if s in (401, 403))
        result["slow_requests"] = sum(1 for t in times if t > SLOW_REQUEST_MS)
        result["total_response_time"] = float(sum(times))
        result["average_response_time"] = (sum(times) / len(times)) if times else 0.0
        result["urls"] = [r["url"] for r in trace]
        return result

    # ── DOM ──────────────────────────────────────────────────────────────

    def analyze_dom(self, before_path: str | None, after_path: str | None) -> dict:
        if not before_path or not after_path:
            return _dom_default()
        try:
            before = self.store.load_dom(before_path)
            after = self.store.load_dom(after_path)
        except AnalysisError as exc:
            logger.warning("DOM analysis degraded: %s", exc)
            return _dom_default(degraded=True)

        before_tags = Counter(t.lower() for t in _TAG_RE.findall(before))
        after_tags = Counter(t.lower() for t in _TAG_RE.findall(after))
        added = sum((after_tags - before_tags).values())
        removed = sum((before_tags - after_tags).values())
        change_count = added + removed
        if change_count == 0 and before.strip() != after.strip():
            change_count = 1  # text or attribute change only
        return {
            "change_count": change_count,
            "nodes_added": added,
            "nodes_removed": removed,
            "significant": change_count > SIGNIFICANT_DOM_CHANGES,
            "degraded": False,
        }

    # ── Coverage ─────────────────────────────────────────────────────────

    def analyze_coverage(self, path: str | None, baseline: dict | None = None) -> dict:
        try:
            coverage = self.store.load_coverage(path, baseline)
        except AnalysisError as exc:
            logger.warning("Coverage analysis degraded: %s", exc)
            return _coverage_default(degraded=True)
        coverage["proportional"] = coverage["change"] is None or coverage["change"] >= 0
        coverage["degraded"] = False
        return coverage

    # ── HTTP exchange ────────────────────────────────────────────────────

    def parse_http(self, kind: str, path: str | None) -> dict | None:
        try:
            return self.store.load_http(kind, path)
        except AnalysisError as exc:
            logger.warning("HTTP %s parse degraded: %s", kind, exc)
            return None
