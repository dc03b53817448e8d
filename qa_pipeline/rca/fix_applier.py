"""
Fix application seam.

Generating a fix is a model call; putting it into the code under test is an
external concern (a repo agent, a patch bot, a human). The engine only needs
``apply(...) -> {applied, changes_made, error}``.
"""

import threading
from abc import ABC, abstractmethod

from qa_pipeline.core.exceptions import WorkflowCancelledError


class FixApplier(ABC):
    @abstractmethod
    def apply(self, plan: dict, proposal: str, cancel_event: threading.Event | None = None) -> dict:
        """Apply ``proposal`` for ``plan``; returns {applied, changes_made, error}."""
        ...


class ProposalFixApplier(FixApplier):
    """Records the proposal as the change set.

    The next execution stage re-runs the test against whatever the proposal
    produced, so acceptance is decided by verification, not here.
    """

    def apply(self, plan: dict, proposal: str, cancel_event: threading.Event | None = None) -> dict:
        if cancel_event is not None and cancel_event.is_set():
            raise WorkflowCancelledError("Fix application cancelled by shutdown")
        if not proposal or not proposal.strip():
            return {"applied": False, "changes_made": "", "error": "Empty fix proposal"}
        return {"applied": True, "changes_made": proposal.strip(), "error": None}
