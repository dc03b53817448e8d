"""
Shared pytest fixtures for the QA Verification Pipeline test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - store: ArtifactStore rooted at the test's tmp_path
    - write_artifacts: writes artifact files with mtimes in capture order
    - ui_evidence / api_evidence / unit_evidence: evidence dict factories
      backed by real files
    - orch: TestWorkflowOrchestrator wired to tmp_path, shut down after the test
"""

import json
import os
import time

import pytest

from qa_pipeline import create_app
from qa_pipeline.models import db as _db
from qa_pipeline.models.evidence import ARTIFACT_FIELDS
from qa_pipeline.verification.artifacts import PNG_MAGIC, ArtifactStore

PNG_BYTES = PNG_MAGIC + b"\0" * 12000

DOM_BEFORE = (
    "<html><head><title>Login</title></head><body>"
    "<form id='login'><input name='user'/><input name='password'/>"
    "<button type='submit'>Sign in</button></form></body></html>"
)
DOM_AFTER = (
    "<html><head><title>Dashboard</title></head><body>"
    "<nav><ul><li>Home</li><li>Orders</li></ul></nav>"
    "<div id='welcome'><h1>Welcome back</h1><p>3 open orders</p></div></body></html>"
)
CLEAN_CONSOLE = [
    {"level": "info", "message": "App bootstrapped"},
    {"level": "info", "message": "POST /api/login 200"},
    {"level": "info", "message": "Navigated to /dashboard"},
]
NETWORK_TRACE = [
    {"method": "POST", "url": "https://app.test/api/login", "status_code": 200, "response_time": 120},
    {"method": "GET", "url": "https://app.test/api/orders", "status_code": 200, "response_time": 80},
]
HTTP_REQUEST = {"method": "POST", "url": "https://api.test/orders", "headers": {}, "body": {"sku": "A-1"}}
HTTP_RESPONSE = {"status": 201, "headers": {"Content-Type": "application/json"}, "body": {"id": 17}}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["EVIDENCE_ROOT"] = str(tmp_path_factory.mktemp("evidence"))
    application.config["HANDOFF_DIR"] = str(tmp_path_factory.mktemp("handoffs"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Evidence files ───────────────────────────────────────────────────────


@pytest.fixture()
def store(tmp_path):
    return ArtifactStore(str(tmp_path))


@pytest.fixture()
def write_artifacts(tmp_path):
    """Write ``{field: (filename, content)}`` and return ``{field: abs path}``.

    Files are stamped one second apart in capture order so the integrity
    timestamp check sees a realistic run.
    """

    def _write(files: dict) -> dict:
        base = time.time() - 120
        paths = {}
        ordered = [f for f in ARTIFACT_FIELDS if f in files]
        for i, field in enumerate(ordered):
            filename, content = files[field]
            path = tmp_path / filename
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
            os.utime(path, (base + i, base + i))
            paths[field] = str(path)
        return paths

    return _write


@pytest.fixture()
def ui_evidence(write_artifacts):
    """Factory for a complete, consistent UI evidence set."""

    def _make(*, test_id="ui-login", epic_id="EPIC-1", pass_fail="pass", duration_ms=2400,
              console=None, screenshot_after="after.png", metadata=None, skip=(), **overrides):
        files = {
            "screenshot_before": ("before.png", PNG_BYTES),
            "dom_snapshot_before": ("dom_before.html", DOM_BEFORE),
            "network_trace": ("network.json", NETWORK_TRACE),
            "console_logs": ("console.json", CLEAN_CONSOLE if console is None else console),
            "dom_snapshot": ("dom_after.html", DOM_AFTER),
            "screenshot_after": (screenshot_after, PNG_BYTES),
        }
        for field in skip:
            files.pop(field)
        evidence = {
            "epic_id": epic_id,
            "test_id": test_id,
            "test_type": "ui",
            "test_name": "login form redirects to dashboard",
            "pass_fail": pass_fail,
            "duration_ms": duration_ms,
            "metadata": metadata or {},
            **write_artifacts(files),
        }
        evidence.update(overrides)
        return evidence

    return _make


@pytest.fixture()
def api_evidence(write_artifacts):
    """Factory for an API evidence set (request + response)."""

    def _make(*, test_id="api-create-order", epic_id="EPIC-1", pass_fail="pass", duration_ms=180,
              response=None, **overrides):
        paths = write_artifacts({
            "http_request": ("request.json", HTTP_REQUEST),
            "http_response": ("response.json", HTTP_RESPONSE if response is None else response),
        })
        evidence = {
            "epic_id": epic_id,
            "test_id": test_id,
            "test_type": "api",
            "test_name": "create order returns 201",
            "pass_fail": pass_fail,
            "duration_ms": duration_ms,
            "metadata": {},
            **paths,
        }
        evidence.update(overrides)
        return evidence

    return _make


@pytest.fixture()
def unit_evidence(write_artifacts):
    """Factory for a unit evidence set with a before/after coverage report."""

    def _make(*, test_id="unit-pricing", epic_id="EPIC-1", pass_fail="pass", duration_ms=1200,
              before=120, after=140, total=200, **overrides):
        coverage = {
            "before": {"lines_covered": before, "lines_total": total},
            "after": {"lines_covered": after, "lines_total": total},
        }
        paths = write_artifacts({"coverage_report": ("coverage.json", coverage)})
        evidence = {
            "epic_id": epic_id,
            "test_id": test_id,
            "test_type": "unit",
            "test_name": "pricing applies bulk discount",
            "pass_fail": pass_fail,
            "duration_ms": duration_ms,
            "metadata": {},
            **paths,
        }
        evidence.update(overrides)
        return evidence

    return _make


# ── Orchestrator ─────────────────────────────────────────────────────────


@pytest.fixture()
def make_orchestrator(app, tmp_path):
    """Build orchestrators against tmp_path; every one is shut down after the test."""
    from qa_pipeline.orchestration.orchestrator import TestWorkflowOrchestrator

    built = []

    def _make(**kwargs):
        kwargs.setdefault("store", ArtifactStore(str(tmp_path)))
        kwargs.setdefault("handoff_dir", str(tmp_path / "handoffs"))
        orchestrator = TestWorkflowOrchestrator(app, **kwargs)
        built.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in built:
        orchestrator.shutdown()


@pytest.fixture()
def orch(make_orchestrator):
    return make_orchestrator()
