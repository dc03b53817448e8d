"""
Logging setup for the pipeline.

One stderr handler on the root logger:
    - development / testing: one readable line per record, prefixed with the
      workflow context (``wf=12 execution ui-login``) when the caller passed it
    - production: one JSON object per line

Pipeline code attaches context through ``extra=`` (``workflow_id``,
``test_id``, ``epic_id``, ``stage``, ``error_kind``); request logging adds the
HTTP fields. ``LOG_LEVEL`` overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_KEYS = ("workflow_id", "test_id", "epic_id", "evidence_id", "stage", "error_kind")
REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"

# chatty at DEBUG/INFO, never interesting here
_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "anthropic", "alembic.runtime")


def record_context(record: logging.LogRecord, keys=CONTEXT_KEYS + REQUEST_KEYS) -> dict:
    """The ``extra=`` fields present on ``record``."""
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    @staticmethod
    def _prefix(record: logging.LogRecord) -> str:
        ctx = record_context(record, ("workflow_id", "stage", "test_id"))
        parts = []
        if "workflow_id" in ctx:
            parts.append(f"wf={ctx['workflow_id']}")
        if "stage" in ctx:
            parts.append(ctx["stage"])
        if "test_id" in ctx:
            parts.append(ctx["test_id"])
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{_LEVEL_COLORS.get(record.levelno, '')}{level}{_RESET}"
        line = f"{ts} {level} {record.name}:{self._prefix(record)} {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the handler; JSON unless DEBUG or TESTING is on."""
    testing = app.config.get("TESTING", False)
    structured = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if structured else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if structured else ReadableFormatter(color=sys.stderr.isatty()))
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name,
                        "json" if structured else "readable")
