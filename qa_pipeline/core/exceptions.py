"""
Pipeline-wide exception hierarchy.

Services, analyzers and the orchestrator raise these types; blueprints
register handlers against them once and get consistent HTTP status codes.

Two families live here:

  * Request-level errors (NotFoundError, ValidationError, ConflictError)
    map straight to 404 / 422 / 409.
  * Pipeline errors (ConfigurationError, AnalysisError, StageTimeoutError,
    ExhaustedRetriesError, InvalidTransitionError, WorkflowCancelledError)
    are raised inside verification, RCA and orchestration. AnalysisError is
    always recovered inside the sub-checker that raised it; the others reach
    the orchestrator and end up in the escalation summary.

Usage:
    from qa_pipeline.core.exceptions import NotFoundError, StageTimeoutError

    raise NotFoundError(resource="TestWorkflow", resource_id=42)
    raise StageTimeoutError("execution", 300)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "TestWorkflow").
        resource_id: The key that was looked up. Included in logs.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would overwrite immutable state.

    Used for rewriting an already-populated artifact path, resolving a red
    flag twice, or changing a flag's severity after detection. Maps to 409.

    Args:
        resource: Model name.
        field: The field whose value is locked.
        value: The attempted value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource}.{field} is immutable (attempted {value!r})"
        super().__init__(msg)


class ConfigurationError(Exception):
    """Raised at construction time when components are wired inconsistently.

    The canonical case is a verifier configured on the same (or a weaker)
    model tier than the executor it is checking. Never downgraded to a
    warning.
    """


class AnalysisError(Exception):
    """An artifact could not be read or parsed.

    Args:
        kind: Artifact kind (``console_logs``, ``coverage_report`` ...).
        path: The path that failed.
        reason: Underlying error text.
    """

    def __init__(self, kind: str, path: str | None, reason: str) -> None:
        self.kind = kind
        self.path = path
        self.reason = reason
        super().__init__(f"{kind} artifact {path!r} unreadable: {reason}")


class StageTimeoutError(TimeoutError):
    """A workflow stage exceeded its ceiling."""

    def __init__(self, stage: str, timeout_s: float) -> None:
        self.stage = stage
        self.timeout_s = timeout_s
        super().__init__(f"Stage '{stage}' exceeded its {timeout_s:g}s ceiling")


class ExhaustedRetriesError(Exception):
    """The fix engine reached its attempt ceiling (or ran out of strategies)."""

    def __init__(self, attempts: int, reason: str = "Max retries exhausted") -> None:
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"{reason} after {attempts} attempt(s)")


class InvalidTransitionError(Exception):
    """A workflow was asked to move along an edge the state machine forbids."""

    def __init__(self, from_stage: str, to_stage: str) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Invalid workflow transition: {from_stage} -> {to_stage}")


class WorkflowCancelledError(Exception):
    """Shutdown was requested while a stage was in flight."""
