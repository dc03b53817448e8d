"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 whenever the process is serving
    GET /api/v1/health/live   — database, workflow backlog and model-tier wiring;
                                503 when a required check fails
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select

from qa_pipeline.ai.model_selector import tier_rank
from qa_pipeline.models import db
from qa_pipeline.models.workflow import TestWorkflow

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    t0 = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}


def _check_backlog() -> dict:
    """Workflow counts per status; informational, never fails the probe."""
    try:
        rows = db.session.execute(
            select(TestWorkflow.status, func.count()).group_by(TestWorkflow.status)
        ).all()
    except Exception as exc:
        logger.warning("Health check: workflow table unavailable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "by_status": {status: count for status, count in rows}}


def _check_tiers() -> dict:
    cfg = current_app.config
    verifier, executor = cfg.get("VERIFIER_TIER"), cfg.get("EXECUTOR_TIER")
    try:
        ok = tier_rank(verifier) > tier_rank(executor)
    except Exception:
        ok = False
    if not ok:
        logger.warning("Health check: verifier tier %r is not above executor tier %r", verifier, executor)
    return {
        "status": "ok" if ok else "error",
        "verifier": verifier,
        "executor": executor,
        "provider": cfg.get("LLM_PROVIDER"),
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _check_database()}
    if checks["database"]["status"] == "ok":
        checks["workflows"] = _check_backlog()
    checks["model_tiers"] = _check_tiers()

    healthy = checks["database"]["status"] == "ok" and checks["model_tiers"]["status"] == "ok"
    checks["app"] = {"name": "QA Verification Pipeline", "testing": current_app.testing}
    return jsonify({"status": "healthy" if healthy else "degraded", "checks": checks}), (200 if healthy else 503)
