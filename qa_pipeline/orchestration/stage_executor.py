"""
Stage executor — runs one stage computation off the workflow thread.

Each call gets its own daemon thread and cancel event, so a stage that
ignores its cancel event after a timeout never holds up a stage from another
workflow; the workflow pool already bounds how many stages are live at once.
The workflow thread waits on the future in short slices so it notices both
the stage ceiling and a shutdown request; either one sets the call's event so
the in-flight work can stop at its next check.
"""

import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout

from qa_pipeline.core.exceptions import StageTimeoutError, WorkflowCancelledError

logger = logging.getLogger(__name__)

_POLL_S = 0.1


class StageExecutor:
    def __init__(self, shutdown_event: threading.Event):
        self.shutdown_event = shutdown_event
        self._lock = threading.Lock()
        self._in_flight: set[threading.Event] = set()

    def run(self, stage: str, fn, timeout: float):
        """Run ``fn(cancel_event)`` with a ceiling of ``timeout`` seconds.

        Raises:
            StageTimeoutError: the ceiling elapsed first.
            WorkflowCancelledError: shutdown was requested while waiting.
        """
        if self.shutdown_event.is_set():
            raise WorkflowCancelledError(f"Shutdown before stage '{stage}' started")

        cancel_event = threading.Event()
        future = self._start(stage, fn, cancel_event)
        deadline = time.monotonic() + timeout
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    cancel_event.set()
                    logger.warning("Stage %s exceeded %.1fs ceiling", stage, timeout, extra={"stage": stage})
                    raise StageTimeoutError(stage, timeout)
                if self.shutdown_event.is_set():
                    cancel_event.set()
                    raise WorkflowCancelledError(f"Shutdown during stage '{stage}'")
                try:
                    return future.result(timeout=min(_POLL_S, remaining))
                except FutureTimeout:
                    continue
        finally:
            with self._lock:
                self._in_flight.discard(cancel_event)

    def _start(self, stage: str, fn, cancel_event: threading.Event) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def _target():
            try:
                result = fn(cancel_event)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

        with self._lock:
            self._in_flight.add(cancel_event)
        threading.Thread(target=_target, name=f"qa-stage-{stage}", daemon=True).start()
        return future

    def shutdown(self):
        """Signal every in-flight stage to stop; threads are daemons and are not joined."""
        with self._lock:
            for cancel_event in self._in_flight:
                cancel_event.set()
