"""
Evidence blueprint — ingestion, red flags and independent verification.

Endpoints:
    POST  /api/v1/evidence                        — record an evidence row
    GET   /api/v1/evidence                        — list (?test_id, ?epic_id)
    GET   /api/v1/evidence/<id>                   — detail
    PATCH /api/v1/evidence/<id>/artifacts         — attach artifact paths (write-once)
    POST  /api/v1/evidence/<id>/red-flags         — run detection, append flags
    GET   /api/v1/red-flags                       — list (?test_id, ?epic_id, ?severity, ?resolved)
    GET   /api/v1/red-flags/report                — markdown flag report (?epic_id)
    PATCH /api/v1/red-flags/<id>/resolve          — resolve with notes
    POST  /api/v1/evidence/<id>/verify            — verify and persist a report
    GET   /api/v1/verification-reports            — list (?test_id, ?epic_id)
    GET   /api/v1/verification-reports/<id>       — detail (?format=markdown)
    GET   /api/v1/fix-learnings/stats             — learning statistics
"""

import logging

from flask import Blueprint, jsonify, request

from qa_pipeline.blueprints import bool_arg, get_orchestrator, register_error_handlers
from qa_pipeline.models import db
from qa_pipeline.red_flags.detector import summarize
from qa_pipeline.red_flags.reporter import format_batch_report
from qa_pipeline.services import evidence_service, red_flag_service, verification_service
from qa_pipeline.verification.reporter import format_verification_report

logger = logging.getLogger(__name__)

evidence_bp = Blueprint("evidence", __name__, url_prefix="/api/v1")
register_error_handlers(evidence_bp)


# ── Evidence ─────────────────────────────────────────────────────────────


@evidence_bp.route("/evidence", methods=["POST"])
def record_evidence():
    data = request.get_json(silent=True) or {}
    evidence = evidence_service.record_evidence(data)
    db.session.commit()
    return jsonify(evidence.to_dict()), 201


@evidence_bp.route("/evidence", methods=["GET"])
def list_evidence():
    rows = evidence_service.list_evidence(request.args.get("test_id"), request.args.get("epic_id"))
    return jsonify({"items": [e.to_dict() for e in rows], "total": len(rows)})


@evidence_bp.route("/evidence/<int:evidence_id>", methods=["GET"])
def get_evidence(evidence_id):
    return jsonify(evidence_service.get_evidence(evidence_id).to_dict())


@evidence_bp.route("/evidence/<int:evidence_id>/artifacts", methods=["PATCH"])
def attach_artifacts(evidence_id):
    data = request.get_json(silent=True) or {}
    evidence = evidence_service.attach_artifacts(evidence_id, data)
    db.session.commit()
    return jsonify(evidence.to_dict())


# ── Red flags ────────────────────────────────────────────────────────────


@evidence_bp.route("/evidence/<int:evidence_id>/red-flags", methods=["POST"])
def detect_red_flags(evidence_id):
    flags = red_flag_service.detect_and_record(evidence_id, get_orchestrator().detector)
    db.session.commit()
    items = [f.to_dict() for f in flags]
    return jsonify({"items": items, "summary": summarize(items)}), 201


@evidence_bp.route("/red-flags", methods=["GET"])
def list_red_flags():
    flags = red_flag_service.list_flags(
        test_id=request.args.get("test_id"),
        epic_id=request.args.get("epic_id"),
        evidence_id=request.args.get("evidence_id", type=int),
        severity=request.args.get("severity"),
        resolved=bool_arg("resolved"),
    )
    items = [f.to_dict() for f in flags]
    return jsonify({"items": items, "total": len(items), "summary": summarize(items)})


@evidence_bp.route("/red-flags/report", methods=["GET"])
def red_flag_report():
    flags = red_flag_service.list_flags(epic_id=request.args.get("epic_id"), resolved=False)
    by_test: dict[str, list[dict]] = {}
    for f in flags:
        by_test.setdefault(f.test_id, []).append(f.to_dict())
    return format_batch_report(by_test), 200, {"Content-Type": "text/markdown"}


@evidence_bp.route("/red-flags/<int:flag_id>/resolve", methods=["PATCH"])
def resolve_red_flag(flag_id):
    data = request.get_json(silent=True) or {}
    flag = red_flag_service.resolve_flag(flag_id, data.get("resolution_notes", ""))
    db.session.commit()
    return jsonify(flag.to_dict())


# ── Verification ─────────────────────────────────────────────────────────


@evidence_bp.route("/evidence/<int:evidence_id>/verify", methods=["POST"])
def verify_evidence(evidence_id):
    report = verification_service.verify_evidence(evidence_id, get_orchestrator().verifier)
    db.session.commit()
    return jsonify(report.to_dict()), 201


@evidence_bp.route("/verification-reports", methods=["GET"])
def list_verification_reports():
    reports = verification_service.list_reports(
        test_id=request.args.get("test_id"), epic_id=request.args.get("epic_id"),
    )
    return jsonify({"items": [r.to_dict() for r in reports], "total": len(reports)})


@evidence_bp.route("/verification-reports/<int:report_id>", methods=["GET"])
def get_verification_report(report_id):
    report = verification_service.get_report(report_id).to_dict()
    if request.args.get("format") == "markdown":
        return format_verification_report(report), 200, {"Content-Type": "text/markdown"}
    return jsonify(report)


# ── Fix learnings ────────────────────────────────────────────────────────


@evidence_bp.route("/fix-learnings/stats", methods=["GET"])
def fix_learning_stats():
    return jsonify(get_orchestrator().learning_store.stats())
