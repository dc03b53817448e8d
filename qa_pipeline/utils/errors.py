"""JSON error bodies for the pipeline API.

Every error response has the shape ``{"error": <message>, "code": <E.*>}``
plus ``"details"`` when there is structured context (allowed values, the
conflicting field, the illegal transition)::

    return api_error(E.VALIDATION_REQUIRED, "test_id is required")
    return api_error(E.CONFLICT_STATE, "Workflow is already failed", details={"stage": "failed"})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing request field
    VALIDATION_RULE = "ERR_VALIDATION_RULE"           # ValidationError from a service
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_IMMUTABLE = "ERR_CONFLICT_IMMUTABLE"     # write-once field / resolved flag
    CONFLICT_STATE = "ERR_CONFLICT_STATE"             # terminal workflow, illegal transition
    CONFIGURATION = "ERR_CONFIGURATION"               # tier collision, unknown provider


HTTP_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_IMMUTABLE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFIGURATION: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for a Flask view; status defaults from ``HTTP_STATUS``."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)
