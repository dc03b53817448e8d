"""
Request timing middleware.

Stamps every response with ``X-Request-ID`` (echoed from the caller when
present) and ``X-Request-Duration-Ms``, and logs each API call with the
workflow / evidence it addressed. Requests over ``SLOW_THRESHOLD_MS`` log at
WARNING; synchronous workflow runs are the usual offenders.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000

# probes hit these every few seconds
_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready", "/api/v1/health/live"})

_SCOPE_ARGS = ("workflow_id", "evidence_id", "epic_id", "report_id", "flag_id")


def _scope() -> dict:
    view_args = request.view_args or {}
    scope = {k: view_args[k] for k in _SCOPE_ARGS if k in view_args}
    for key in ("test_id", "epic_id"):
        if key not in scope and request.args.get(key):
            scope[key] = request.args[key]
    return scope


def _level(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_response(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path in _QUIET_PATHS:
            return response
        logger.log(
            _level(response.status_code, duration_ms),
            "%s %s -> %d (%.0fms)", request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "request_id": g.request_id,
                **_scope(),
            },
        )
        return response
