"""
Bounded workflow pool.

At most ``max_workers`` workflows are active at once; further submissions
queue FIFO inside the ThreadPoolExecutor. Every task runs inside its own app
context and releases its scoped session on exit.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from flask import Flask

from qa_pipeline.models import db

logger = logging.getLogger(__name__)


class WorkflowPool:
    def __init__(self, app: Flask, max_workers: int = 4):
        self.app = app
        self.max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="qa-workflow")

    def submit(self, fn, workflow_id: int) -> Future:
        """Queue ``fn(workflow_id)``; returns the future."""
        return self._executor.submit(self._run, fn, workflow_id)

    def _run(self, fn, workflow_id: int):
        with self.app.app_context():
            try:
                return fn(workflow_id)
            except Exception:
                logger.exception("Workflow %d crashed in pool", workflow_id, extra={"workflow_id": workflow_id})
                raise
            finally:
                db.session.remove()

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait, cancel_futures=True)
