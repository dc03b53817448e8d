"""
QA Verification Pipeline
Test executors — the dispatch side of the ``execution`` stage.

    TestExecutor.execute(test_definition, cancel_event)
        -> {"passed": bool, "duration_ms": int, "evidence": dict | None, "error": str | None}

Two implementations:

  * HttpTestExecutor — POSTs the definition to an external runner service
    over requests. Pass a custom ``session`` in tests to intercept HTTP calls.
  * EvidenceReplayExecutor — no dispatch; the definition may carry a
    recorded result, otherwise the latest stored evidence is used as-is.

Executors run on a stage thread: they must not touch the database.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod

import requests

from qa_pipeline.core.exceptions import StageTimeoutError, WorkflowCancelledError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 300


class TestExecutor(ABC):
    __test__ = False  # not a pytest class

    @abstractmethod
    def execute(self, test_definition: dict, cancel_event: threading.Event | None = None) -> dict:
        """Run one test and return its execution result."""


class EvidenceReplayExecutor(TestExecutor):
    """Replays a recorded result; evidence is whatever the producers stored."""

    def execute(self, test_definition: dict, cancel_event: threading.Event | None = None) -> dict:
        if cancel_event is not None and cancel_event.is_set():
            raise WorkflowCancelledError("Cancelled during execution")
        recorded = test_definition.get("result")
        if isinstance(recorded, dict):
            return {
                "passed": bool(recorded.get("passed")),
                "duration_ms": int(recorded.get("duration_ms") or 0),
                "evidence": recorded.get("evidence"),
                "error": recorded.get("error"),
            }
        return {"passed": None, "duration_ms": 0, "evidence": None, "error": None, "replayed": True}


class HttpTestExecutor(TestExecutor):
    """Dispatches test definitions to a runner service at ``{base_url}/execute``."""

    def __init__(self, base_url: str, timeout: float = _DEFAULT_TIMEOUT,
                 session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def execute(self, test_definition: dict, cancel_event: threading.Event | None = None) -> dict:
        if cancel_event is not None and cancel_event.is_set():
            raise WorkflowCancelledError("Cancelled during execution")

        url = f"{self.base_url}/execute"
        start = time.monotonic()
        try:
            resp = self.session.post(url, json=test_definition, timeout=self.timeout)
        except requests.Timeout:
            raise StageTimeoutError("execution", self.timeout)
        except requests.RequestException as exc:
            logger.warning("Executor request to %s failed: %s", url, exc)
            return {
                "passed": False,
                "duration_ms": int((time.monotonic() - start) * 1000),
                "evidence": None,
                "error": f"Executor unreachable: {exc}",
            }

        if cancel_event is not None and cancel_event.is_set():
            raise WorkflowCancelledError("Cancelled during execution")

        if resp.status_code >= 400:
            return {
                "passed": False,
                "duration_ms": int((time.monotonic() - start) * 1000),
                "evidence": None,
                "error": f"Executor returned HTTP {resp.status_code}: {resp.text[:500]}",
            }

        try:
            body = resp.json()
        except ValueError:
            return {"passed": False, "duration_ms": int((time.monotonic() - start) * 1000),
                    "evidence": None, "error": "Executor returned a non-JSON body"}

        return {
            "passed": bool(body.get("passed")),
            "duration_ms": int(body.get("duration_ms") or (time.monotonic() - start) * 1000),
            "evidence": body.get("evidence"),
            "error": body.get("error"),
        }


def build_executor(config) -> TestExecutor:
    """HTTP executor when ``EXECUTOR_BASE_URL`` is set, replay otherwise."""
    base_url = config.get("EXECUTOR_BASE_URL")
    if base_url:
        return HttpTestExecutor(base_url, timeout=config.get("EXECUTOR_TIMEOUT", _DEFAULT_TIMEOUT))
    return EvidenceReplayExecutor()
