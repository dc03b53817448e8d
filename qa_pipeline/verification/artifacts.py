"""
Artifact access for evidence files.

Every reader resolves the stored path against the evidence root and raises
``AnalysisError`` on any IO or parse failure; callers decide whether that
means "missing" (red-flag detection) or "neutral default" (analysis).

Accepted formats:
    console logs     JSON list of {level, message} or plain text lines
    network traces   JSON list of {method, url, status_code|statusCode,
                     response_time|responseTime}
    HTTP request /   JSON object
    response
    coverage         {"before": {...}, "after": {...}} summaries, an
                     Istanbul per-file map, or lcov text (LH/LF records)
    DOM snapshots    HTML text
"""

import json
import os
import re

from qa_pipeline.core.exceptions import AnalysisError

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
JPEG_MAGIC = b"\xff\xd8\xff"

_LEVEL_ALIASES = {"warn": "warning", "err": "error", "log": "info", "debug": "info"}
_TEXT_LEVEL_RE = re.compile(r"^\s*\[?(error|warning|warn|info|log|debug)\]?[:\s]", re.IGNORECASE)


class ArtifactStore:
    """Reads evidence artifacts below ``root``."""

    def __init__(self, root: str | None = None):
        self.root = root or os.getcwd()

    def resolve(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.root, path)

    def exists(self, path: str | None) -> bool:
        return bool(path) and os.path.isfile(self.resolve(path))

    def stat(self, kind: str, path: str) -> os.stat_result:
        try:
            return os.stat(self.resolve(path))
        except OSError as exc:
            raise AnalysisError(kind, path, str(exc)) from exc

    def read_bytes(self, kind: str, path: str | None, limit: int | None = None) -> bytes:
        if not path:
            raise AnalysisError(kind, path, "no path recorded")
        try:
            with open(self.resolve(path), "rb") as fh:
                return fh.read(limit) if limit else fh.read()
        except OSError as exc:
            raise AnalysisError(kind, path, str(exc)) from exc

    def read_text(self, kind: str, path: str | None) -> str:
        try:
            return self.read_bytes(kind, path).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AnalysisError(kind, path, f"not utf-8 text: {exc}") from exc

    def read_json(self, kind: str, path: str | None):
        text = self.read_text(kind, path)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise AnalysisError(kind, path, f"invalid JSON: {exc}") from exc

    # ── Typed loaders ────────────────────────────────────────────────────

    def load_console_logs(self, path: str | None) -> list[dict]:
        text = self.read_text("console_logs", path)
        stripped = text.strip()
        if not stripped:
            return []
        if stripped[0] in "[{":
            # "[error] boom" is a text line, not a broken JSON list
            try:
                data = json.loads(stripped)
            except ValueError:
                data = None
            if isinstance(data, dict):
                data = data.get("logs", data.get("entries", []))
                if not isinstance(data, list):
                    raise AnalysisError("console_logs", path, "expected a list of log entries")
            if isinstance(data, list):
                return [_normalize_log_entry(e) for e in data]
        entries = []
        for line in stripped.splitlines():
            if not line.strip():
                continue
            match = _TEXT_LEVEL_RE.match(line)
            level = match.group(1).lower() if match else "info"
            entries.append({"level": _LEVEL_ALIASES.get(level, level), "message": line.strip()})
        return entries

    def load_network_trace(self, path: str | None) -> list[dict]:
        data = self.read_json("network_trace", path)
        if isinstance(data, dict):
            data = data.get("requests", data.get("entries", []))
        if not isinstance(data, list):
            raise AnalysisError("network_trace", path, "expected a list of requests")
        requests_ = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            requests_.append({
                "method": raw.get("method", "GET"),
                "url": raw.get("url", ""),
                "status_code": _as_int(raw.get("status_code", raw.get("statusCode", raw.get("status")))),
                "response_time": _as_float(raw.get("response_time", raw.get("responseTime"))),
            })
        return requests_

    def load_http(self, kind: str, path: str | None) -> dict:
        data = self.read_json(kind, path)
        if not isinstance(data, dict):
            raise AnalysisError(kind, path, "expected a JSON object")
        return data

    def load_dom(self, path: str | None) -> str:
        return self.read_text("dom_snapshot", path)

    def load_coverage(self, path: str | None, baseline: dict | None = None) -> dict:
        """Return ``{"before", "after", "lines_delta", "change"}``.

        ``before`` / ``after`` are ``{"lines_covered", "lines_total",
        "percentage"}`` or None. ``change`` is the percentage-point delta.
        """
        text = self.read_text("coverage_report", path)
        stripped = text.lstrip()
        try:
            if stripped.startswith("{"):
                data = json.loads(stripped)
                if "after" in data or "before" in data:
                    before = _normalize_coverage(data.get("before"))
                    after = _normalize_coverage(data.get("after"))
                else:
                    before = None
                    after = _parse_istanbul(data)
            elif is_lcov(text):
                before = None
                after = _parse_lcov(text)
            else:
                raise AnalysisError("coverage_report", path, "unrecognized coverage format")
            if before is None and baseline:
                before = _normalize_coverage(baseline)
        except (ValueError, TypeError) as exc:
            raise AnalysisError("coverage_report", path, f"unparseable coverage: {exc}") from exc
        return _coverage_delta(before, after)


def is_lcov(text: str) -> bool:
    """True when ``text`` carries at least one lcov SF: or LF: record."""
    return any(line.startswith(("SF:", "LF:")) for line in text.splitlines())


def _normalize_log_entry(entry) -> dict:
    if isinstance(entry, str):
        return {"level": "info", "message": entry}
    if not isinstance(entry, dict):
        return {"level": "info", "message": str(entry)}
    level = str(entry.get("level", entry.get("type", "info"))).lower()
    return {
        "level": _LEVEL_ALIASES.get(level, level),
        "message": str(entry.get("message", entry.get("text", ""))),
    }


def _as_int(value):
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_float(value):
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _normalize_coverage(data) -> dict | None:
    if not isinstance(data, dict):
        return None
    lines = data.get("lines")
    if isinstance(lines, dict):
        covered = lines.get("covered", 0)
        total = lines.get("total", 0)
        pct = lines.get("pct", lines.get("percentage"))
    else:
        covered = data.get("lines_covered", data.get("linesCovered", 0))
        total = data.get("lines_total", data.get("linesTotal", 0))
        pct = data.get("percentage", data.get("pct", lines if isinstance(lines, (int, float)) else None))
    covered = int(covered or 0)
    total = int(total or 0)
    if pct is None:
        pct = (covered / total * 100) if total else 0.0
    return {"lines_covered": covered, "lines_total": total, "percentage": float(pct)}


def _parse_istanbul(data: dict) -> dict:
    total_block = data.get("total")
    if isinstance(total_block, dict):
        return _normalize_coverage(total_block)
    covered = total = 0
    for file_cov in data.values():
        if isinstance(file_cov, dict) and isinstance(file_cov.get("s"), dict):
            hits = file_cov["s"].values()
        elif isinstance(file_cov, dict) and isinstance(file_cov.get("lines"), dict):
            hits = file_cov["lines"].values()
        else:
            continue
        hits = list(hits)
        total += len(hits)
        covered += sum(1 for h in hits if h and h > 0)
    pct = (covered / total * 100) if total else 0.0
    return {"lines_covered": covered, "lines_total": total, "percentage": pct}


def _parse_lcov(text: str) -> dict:
    covered = total = 0
    for line in text.splitlines():
        if line.startswith("LH:"):
            covered += int(line[3:].strip() or 0)
        elif line.startswith("LF:"):
            total += int(line[3:].strip() or 0)
    pct = (covered / total * 100) if total else 0.0
    return {"lines_covered": covered, "lines_total": total, "percentage": pct}


def _coverage_delta(before, after) -> dict:
    lines_delta = change = None
    if before is not None and after is not None:
        lines_delta = after["lines_covered"] - before["lines_covered"]
        change = round(after["percentage"] - before["percentage"], 4)
    return {"before": before, "after": after, "lines_delta": lines_delta, "change": change}
