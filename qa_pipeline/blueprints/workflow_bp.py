"""
Workflow blueprint — test workflow lifecycle and reports.

Endpoints:
    POST /api/v1/workflows                 — create (optionally ``run``: sync | async)
    GET  /api/v1/workflows                 — list (?epic_id, ?status)
    GET  /api/v1/workflows/<id>            — detail with fix attempts
    POST /api/v1/workflows/<id>/run        — run synchronously to a terminal state
    POST /api/v1/workflows/<id>/resume     — queue on the worker pool
    GET  /api/v1/workflows/<id>/report     — plain-language report (?format=markdown)
    GET  /api/v1/workflows/<id>/rca        — latest root-cause analysis + attempts (?format=markdown)
    POST /api/v1/epics/<epic_id>/run       — create + run a batch of workflows
    GET  /api/v1/epics/<epic_id>/report    — epic rollup (?format=markdown)
"""

import logging

from flask import Blueprint, jsonify, request

from qa_pipeline.blueprints import get_orchestrator, register_error_handlers
from qa_pipeline.core.exceptions import NotFoundError, ValidationError
from qa_pipeline.rca.reporter import format_rca_report
from qa_pipeline.services import workflow_service
from qa_pipeline.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _markdown_requested() -> bool:
    return request.args.get("format") == "markdown"


@workflow_bp.route("/workflows", methods=["POST"])
def create_workflow():
    data = request.get_json(silent=True) or {}
    for field in ("test_id", "epic_id", "test_type"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")

    orchestrator = get_orchestrator()
    wf = orchestrator.create_workflow(
        data["test_id"], data["epic_id"], data["test_type"], data.get("test_definition"),
    )
    mode = data.get("run")
    if mode == "sync":
        wf = orchestrator.run(wf["id"])
    elif mode == "async":
        orchestrator.submit(wf["id"])
        return jsonify(wf), 202
    return jsonify(wf), 201


@workflow_bp.route("/workflows", methods=["GET"])
def list_workflows():
    workflows = workflow_service.list_workflows(
        epic_id=request.args.get("epic_id"), status=request.args.get("status"),
    )
    return jsonify({"items": [wf.to_dict() for wf in workflows], "total": len(workflows)})


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["GET"])
def get_workflow(workflow_id):
    wf = get_orchestrator().get_workflow(workflow_id)
    wf["fix_attempts"] = [a.to_dict() for a in workflow_service.fix_attempts(workflow_id)]
    return jsonify(wf)


@workflow_bp.route("/workflows/<int:workflow_id>/run", methods=["POST"])
def run_workflow(workflow_id):
    wf = workflow_service.get_workflow(workflow_id)
    if wf.is_terminal:
        return api_error(E.CONFLICT_STATE, f"Workflow is already {wf.current_stage}",
                         details={"stage": wf.current_stage})
    return jsonify(get_orchestrator().run(workflow_id))


@workflow_bp.route("/workflows/<int:workflow_id>/resume", methods=["POST"])
def resume_workflow(workflow_id):
    wf = workflow_service.get_workflow(workflow_id)
    if wf.is_terminal:
        return api_error(E.CONFLICT_STATE, f"Workflow is already {wf.current_stage}",
                         details={"stage": wf.current_stage})
    get_orchestrator().submit(workflow_id)
    return jsonify({"id": workflow_id, "queued": True, "current_stage": wf.current_stage}), 202


@workflow_bp.route("/workflows/<int:workflow_id>/report", methods=["GET"])
def workflow_report(workflow_id):
    orchestrator = get_orchestrator()
    if _markdown_requested():
        return orchestrator.format_workflow_report(workflow_id), 200, {"Content-Type": "text/markdown"}
    return jsonify(orchestrator.workflow_report(workflow_id))


@workflow_bp.route("/workflows/<int:workflow_id>/rca", methods=["GET"])
def workflow_rca(workflow_id):
    wf = workflow_service.get_workflow(workflow_id)
    rca = (wf.get_result("fixing") or {}).get("rca")
    if rca is None:
        raise NotFoundError(resource="RootCauseAnalysis", resource_id=workflow_id)
    attempts = [a.to_dict() for a in workflow_service.fix_attempts(workflow_id)]
    if _markdown_requested():
        return format_rca_report(rca, attempts), 200, {"Content-Type": "text/markdown"}
    return jsonify({"workflow_id": workflow_id, "rca": rca, "fix_attempts": attempts})


@workflow_bp.route("/epics/<epic_id>/run", methods=["POST"])
def run_epic(epic_id):
    data = request.get_json(silent=True) or {}
    tests = data.get("tests")
    if not isinstance(tests, list) or not tests:
        raise ValidationError("tests must be a non-empty list")
    report = get_orchestrator().orchestrate_epic(epic_id, tests)
    return jsonify(report)


@workflow_bp.route("/epics/<epic_id>/report", methods=["GET"])
def epic_report(epic_id):
    orchestrator = get_orchestrator()
    if _markdown_requested():
        return orchestrator.format_epic_report(epic_id), 200, {"Content-Type": "text/markdown"}
    return jsonify(orchestrator.epic_report(epic_id))
