"""
QA Verification Pipeline
Blueprint registry and shared helpers.
"""

from flask import current_app, request

from qa_pipeline.core.exceptions import (
    ConfigurationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from qa_pipeline.utils.errors import E, api_error


def get_orchestrator():
    """Lazily build the per-app orchestrator (and with it the verifier and detector)."""
    if not hasattr(current_app, "_qa_orchestrator"):
        from qa_pipeline.orchestration.orchestrator import TestWorkflowOrchestrator

        current_app._qa_orchestrator = TestWorkflowOrchestrator(current_app._get_current_object())
    return current_app._qa_orchestrator


def bool_arg(name: str) -> bool | None:
    """Parse an optional boolean query parameter (``true``/``false``)."""
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


def register_error_handlers(bp):
    """Map the pipeline exception hierarchy onto standard JSON errors."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_IMMUTABLE, str(error), details={"field": error.field})

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        return api_error(E.CONFLICT_STATE, str(error),
                         details={"from": error.from_stage, "to": error.to_stage})

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        current_app.logger.error("Pipeline misconfigured: %s", error)
        return api_error(E.CONFIGURATION, str(error))
