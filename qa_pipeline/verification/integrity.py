"""
Evidence integrity checks.

Four independent checks, ANDed into ``passed``:

    files_exist            every recorded path points at a file
    timestamps_sequential  file mtimes follow capture order (before ≤ action ≤ after)
    sizes_reasonable       no truncated or empty artifacts
    formats_correct        extension and content (image signature, JSON, lcov
                           records) match the artifact kind

Every error is accumulated; no check short-circuits another. Filesystem
failures fail the check they occurred in and never escape ``check()``.
"""

import json
import logging
import os

from qa_pipeline.core.exceptions import AnalysisError
from qa_pipeline.models.evidence import ARTIFACT_FIELDS
from qa_pipeline.verification.artifacts import JPEG_MAGIC, PNG_MAGIC, ArtifactStore, is_lcov

logger = logging.getLogger(__name__)

MIN_SCREENSHOT_BYTES = 10 * 1024
MAX_SCREENSHOT_BYTES = 5 * 1024 * 1024
MIN_JSON_BYTES = 10
MIN_DOM_BYTES = 100
MIN_CAPTURE_SPAN_MS = 10

_SCREENSHOTS = ("screenshot_before", "screenshot_after")
_JSON_KINDS = ("http_request", "http_response", "network_trace")
_DOM_KINDS = ("dom_snapshot_before", "dom_snapshot")

_ALLOWED_EXTENSIONS = {
    "screenshot_before": (".png", ".jpg", ".jpeg"),
    "screenshot_after": (".png", ".jpg", ".jpeg"),
    "http_request": (".json",),
    "http_response": (".json",),
    "network_trace": (".json", ".har"),
    "console_logs": (".json", ".log", ".txt"),
    "coverage_report": (".json", ".info", ".lcov"),
}


class IntegrityChecker:
    """Validates that recorded artifacts are real, ordered and well-formed."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    def check(self, evidence: dict) -> dict:
        errors: list[str] = []
        warnings: list[str] = []
        paths = {f: evidence.get(f) for f in ARTIFACT_FIELDS if evidence.get(f)}

        checks = {
            "files_exist": self._guard(self._files_exist, paths, errors, warnings),
            "timestamps_sequential": self._guard(self._timestamps_sequential, paths, errors, warnings),
            "sizes_reasonable": self._guard(self._sizes_reasonable, paths, errors, warnings),
            "formats_correct": self._guard(self._formats_correct, paths, errors, warnings),
        }
        return {
            "passed": all(checks.values()),
            "checks": checks,
            "errors": errors,
            "warnings": warnings,
        }

    @staticmethod
    def _guard(fn, paths, errors, warnings) -> bool:
        try:
            return fn(paths, errors, warnings)
        except (AnalysisError, OSError) as exc:
            errors.append(f"{fn.__name__.strip('_')}: {exc}")
            logger.warning("Integrity check %s failed on IO: %s", fn.__name__, exc)
            return False

    def _files_exist(self, paths, errors, warnings) -> bool:
        ok = True
        for field, path in paths.items():
            if not self.store.exists(path):
                errors.append(f"{field} file not found: {path}")
                ok = False
        return ok

    def _timestamps_sequential(self, paths, errors, warnings) -> bool:
        stamped = []
        for field in ARTIFACT_FIELDS:
            path = paths.get(field)
            if path and self.store.exists(path):
                stamped.append((field, self.store.stat(field, path).st_mtime))
        if len(stamped) < 2:
            return True

        ok = True
        for (prev_field, prev_ts), (field, ts) in zip(stamped, stamped[1:]):
            if ts < prev_ts:
                errors.append(
                    f"{field} was written before {prev_field} "
                    f"({(prev_ts - ts) * 1000:.0f}ms out of order)"
                )
                ok = False
        span_ms = (max(t for _, t in stamped) - min(t for _, t in stamped)) * 1000
        if span_ms < MIN_CAPTURE_SPAN_MS:
            warnings.append(f"All artifacts written within {span_ms:.1f}ms - capture may be synthetic")
        return ok

    def _sizes_reasonable(self, paths, errors, warnings) -> bool:
        ok = True
        for field, path in paths.items():
            if not self.store.exists(path):
                continue
            try:
                size = self.store.stat(field, path).st_size
            except AnalysisError as exc:
                errors.append(f"{field} could not be sized: {exc.reason}")
                ok = False
                continue
            if field in _SCREENSHOTS:
                if size < MIN_SCREENSHOT_BYTES:
                    errors.append(f"{field} is too small ({size} bytes) - likely corrupted")
                    ok = False
                elif size > MAX_SCREENSHOT_BYTES:
                    warnings.append(f"{field} is very large ({size} bytes)")
            elif field in _DOM_KINDS:
                if size < MIN_DOM_BYTES:
                    errors.append(f"{field} is too small ({size} bytes) - likely invalid")
                    ok = False
            elif size < MIN_JSON_BYTES:
                errors.append(f"{field} is too small ({size} bytes): {path}")
                ok = False
        return ok

    def _formats_correct(self, paths, errors, warnings) -> bool:
        ok = True
        for field, path in paths.items():
            if not self.store.exists(path):
                continue
            ext = os.path.splitext(path)[1].lower()

            if field in _DOM_KINDS:
                if ext not in (".html", ".htm"):
                    warnings.append(f"{field} should be HTML format: {path}")
                continue

            allowed = _ALLOWED_EXTENSIONS.get(field, ())
            if ext not in allowed:
                errors.append(f"{field} has unexpected extension {ext or '(none)'}: {path}")
                ok = False
                continue

            try:
                problem = self._content_problem(field, path, ext)
            except AnalysisError as exc:
                problem = f"{field} could not be read: {exc.reason}"
            if problem:
                errors.append(problem)
                ok = False
        return ok

    def _content_problem(self, field, path, ext) -> str | None:
        if field in _SCREENSHOTS:
            head = self.store.read_bytes(field, path, limit=8)
            magic_ok = head.startswith(PNG_MAGIC) if ext == ".png" else head.startswith(JPEG_MAGIC)
            return None if magic_ok else f"{field} content does not match {ext} signature"
        if ext == ".json" or field in _JSON_KINDS:
            try:
                json.loads(self.store.read_text(field, path))
            except ValueError:
                return f"{field} is not valid JSON: {path}"
        elif ext in (".lcov", ".info"):
            if not is_lcov(self.store.read_text(field, path)):
                return f"{field} has no lcov SF:/LF: records: {path}"
        return None
