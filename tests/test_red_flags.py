"""
Red flag detection tests.

Covers the five deception signatures raised by ``RedFlagDetector``:
    missing_evidence (critical), inconsistent (high), tool_execution (critical),
    timing (medium / low), coverage (high / medium)
plus the flag summary, the markdown reports and the persistence service
(append-only, de-duplicated, resolve-once).
"""

import pytest

from qa_pipeline.core.exceptions import ConflictError, ValidationError
from qa_pipeline.models import db
from qa_pipeline.red_flags.detector import RedFlagDetector, summarize
from qa_pipeline.red_flags.reporter import format_batch_report, format_flag_report
from qa_pipeline.services import evidence_service, red_flag_service


@pytest.fixture()
def detector(store):
    return RedFlagDetector(store)


def _types(flags):
    return [(f["flag_type"], f["severity"]) for f in flags]


# ═════════════════════════════════════════════════════════════════════════════
# Missing evidence
# ═════════════════════════════════════════════════════════════════════════════


class TestMissingEvidence:
    """A reported pass without a required artifact is always critical."""

    def test_complete_ui_evidence_has_no_flags(self, detector, ui_evidence):
        assert detector.detect(ui_evidence()) == []

    @pytest.mark.parametrize("field", ["screenshot_before", "screenshot_after", "console_logs"])
    def test_missing_ui_artifact_is_critical(self, detector, ui_evidence, field):
        flags = detector.detect_missing_evidence(ui_evidence(skip=(field,)))
        assert ("missing_evidence", "critical") in _types(flags)
        assert any(f["proof"]["missing"] == field for f in flags)

    def test_missing_api_response_is_critical(self, detector, api_evidence):
        evidence = api_evidence(http_response=None)
        flags = detector.detect_missing_evidence(evidence)
        assert _types(flags) == [("missing_evidence", "critical")]

    def test_missing_unit_coverage_is_critical(self, detector, unit_evidence):
        flags = detector.detect_missing_evidence(unit_evidence(coverage_report=None))
        assert _types(flags) == [("missing_evidence", "critical")]

    def test_bracketed_text_console_is_accepted(self, detector, ui_evidence, write_artifacts):
        evidence = ui_evidence()
        evidence.update(write_artifacts({"console_logs": ("console.log", "[info] page loaded\n[info] ready\n")}))
        assert detector.detect_missing_evidence(evidence) == []

    def test_unreadable_path_counts_as_missing(self, detector, ui_evidence, tmp_path):
        evidence = ui_evidence(screenshot_before=str(tmp_path / "gone.png"))
        flags = detector.detect_missing_evidence(evidence)
        assert flags[0]["proof"]["missing"] == "screenshot_before"
        assert "unreadable" in flags[0]["description"]

    def test_empty_console_log_is_critical(self, detector, ui_evidence):
        flags = detector.detect_missing_evidence(ui_evidence(console=[]))
        assert len(flags) == 1
        assert "console log is empty" in flags[0]["description"]

    def test_failed_test_is_not_flagged_for_missing_artifacts(self, detector, ui_evidence):
        evidence = ui_evidence(pass_fail="fail", skip=("screenshot_after",))
        assert detector.detect_missing_evidence(evidence) == []

    def test_no_evidence_row_is_critical(self):
        flags = RedFlagDetector.detect_no_evidence("t-1", "EPIC-1", "ui")
        assert _types(flags) == [("missing_evidence", "critical")]
        assert flags[0]["proof"]["evidence_count"] == 0


# ═════════════════════════════════════════════════════════════════════════════
# Inconsistent evidence
# ═════════════════════════════════════════════════════════════════════════════


class TestInconsistentEvidence:
    """Independent sources that contradict each other raise a high flag."""

    def test_error_screenshot_with_clean_console(self, detector, ui_evidence):
        evidence = ui_evidence(metadata={"screenshot": {"contains_error": True, "error_text": "Oops"}})
        flags = detector.detect_inconsistent_evidence(evidence)
        assert _types(flags) == [("inconsistent", "high")]
        assert "screenshot shows an error state" in flags[0]["description"]

    def test_error_filename_without_metadata(self, detector, ui_evidence):
        flags = detector.detect_inconsistent_evidence(ui_evidence(screenshot_after="error-dialog.png"))
        assert _types(flags) == [("inconsistent", "high")]

    def test_console_errors_with_clean_screenshot(self, detector, ui_evidence):
        console = [{"level": "error", "message": "TypeError: x is undefined"}]
        flags = detector.detect_inconsistent_evidence(ui_evidence(console=console))
        assert _types(flags) == [("inconsistent", "high")]
        assert flags[0]["proof"]["console_error_count"] == 1

    def test_expected_error_tests_are_exempt(self, detector, ui_evidence):
        evidence = ui_evidence(
            test_name="shows expected error for bad password",
            metadata={"screenshot": {"contains_error": True}},
        )
        assert detector.detect_inconsistent_evidence(evidence) == []

    def test_failing_http_status_on_pass(self, detector, api_evidence):
        evidence = api_evidence(response={"status": 500, "body": {"error": "boom"}})
        flags = detector.detect_inconsistent_evidence(evidence)
        assert _types(flags) == [("inconsistent", "high")]
        assert flags[0]["proof"]["status"] == 500

    def test_absent_expected_element(self, detector, ui_evidence):
        evidence = ui_evidence(metadata={"expected_elements": ["id='welcome'", "id='logout'"]})
        flags = detector.detect_inconsistent_evidence(evidence)
        assert flags[0]["proof"]["absent_elements"] == ["id='logout'"]


# ═════════════════════════════════════════════════════════════════════════════
# Tool execution
# ═════════════════════════════════════════════════════════════════════════════


class TestToolExecution:
    """Expected tool or network calls that never happened are critical."""

    def test_expected_tool_never_called(self, detector, ui_evidence):
        evidence = ui_evidence(metadata={"expected_tools": ["browser_click"], "tool_calls": []})
        flags = detector.detect_tool_execution(evidence)
        assert _types(flags) == [("tool_execution", "critical")]

    def test_tool_named_in_test_name(self, detector, ui_evidence):
        evidence = ui_evidence(test_name="uses mcp__playwright__navigate to open page")
        flags = detector.detect_tool_execution(evidence)
        assert flags[0]["proof"]["expected_tools"] == ["mcp__playwright__navigate"]

    def test_tool_call_without_result(self, detector, ui_evidence):
        metadata = {"tool_calls": [{"name": "browser_click", "result": None}]}
        flags = detector.detect_tool_execution(ui_evidence(metadata=metadata))
        assert flags[0]["proof"]["calls_without_result"] == ["browser_click"]

    def test_called_tools_pass(self, detector, ui_evidence):
        metadata = {
            "expected_tools": ["browser_click"],
            "tool_calls": [{"name": "browser_click", "result": "ok"}],
        }
        assert detector.detect_tool_execution(ui_evidence(metadata=metadata)) == []

    def test_expected_request_absent_from_trace(self, detector, ui_evidence):
        metadata = {"expected_requests": ["/api/login", "/api/checkout"]}
        flags = detector.detect_tool_execution(ui_evidence(metadata=metadata))
        assert _types(flags) == [("tool_execution", "critical")]
        assert "/api/checkout" in flags[0]["description"]
        assert "/api/login" not in flags[0]["description"]


# ═════════════════════════════════════════════════════════════════════════════
# Timing
# ═════════════════════════════════════════════════════════════════════════════


class TestTiming:
    """Durations under the per-type floor or far below history."""

    def test_api_under_floor_is_medium(self, detector, api_evidence):
        flags = detector.detect_timing_anomalies(api_evidence(duration_ms=10))
        assert _types(flags) == [("timing", "medium")]
        assert flags[0]["proof"]["floor_ms"] == 50

    def test_at_floor_is_fine(self, detector, api_evidence):
        assert detector.detect_timing_anomalies(api_evidence(duration_ms=50)) == []

    def test_historical_outlier(self, detector, ui_evidence):
        flags = detector.detect_timing_anomalies(ui_evidence(duration_ms=900), [4000, 4100, 3900, 4000])
        assert _types(flags) == [("timing", "medium")]
        assert flags[0]["proof"]["samples"] == 4

    def test_short_history_is_ignored(self, detector, ui_evidence):
        assert detector.detect_timing_anomalies(ui_evidence(duration_ms=900), [4000, 4000]) == []

    def test_injected_floor_table(self, store, api_evidence):
        detector = RedFlagDetector(store, timing_floors={"api": 5})
        assert detector.detect_timing_anomalies(api_evidence(duration_ms=10)) == []


# ═════════════════════════════════════════════════════════════════════════════
# Coverage
# ═════════════════════════════════════════════════════════════════════════════


class TestCoverage:
    """Unit/integration passes must move coverage."""

    def test_unchanged_coverage_is_high(self, detector, unit_evidence):
        flags = detector.detect_coverage_unchanged(unit_evidence(before=120, after=120))
        assert _types(flags) == [("coverage", "high")]
        assert "unchanged" in flags[0]["description"]

    def test_decreased_coverage_is_high(self, detector, unit_evidence):
        flags = detector.detect_coverage_unchanged(unit_evidence(before=120, after=110))
        assert "decreased" in flags[0]["description"]

    def test_small_gain_is_medium(self, detector, unit_evidence):
        flags = detector.detect_coverage_unchanged(unit_evidence(before=120, after=122))
        assert _types(flags) == [("coverage", "medium")]

    def test_real_gain_passes(self, detector, unit_evidence):
        assert detector.detect_coverage_unchanged(unit_evidence(before=120, after=140)) == []

    def test_unparseable_lcov_is_critical(self, detector, write_artifacts):
        paths = write_artifacts({"coverage_report": ("coverage.lcov", "this is not a coverage report at all")})
        evidence = {"test_id": "unit-garbage", "test_type": "unit", "pass_fail": "pass", **paths}
        flags = detector.detect_coverage_unchanged(evidence)
        assert _types(flags) == [("missing_evidence", "critical")]
        assert flags[0]["proof"]["reason"] == "unrecognized coverage format"

    def test_unparseable_json_report_is_critical(self, detector, unit_evidence):
        evidence = unit_evidence()
        with open(evidence["coverage_report"], "w") as fh:
            fh.write("{truncated")
        assert _types(detector.detect(evidence)) == [("missing_evidence", "critical")]

    def test_absent_report_is_left_to_missing_evidence(self, detector, unit_evidence, tmp_path):
        evidence = unit_evidence(coverage_report=str(tmp_path / "gone.json"))
        assert detector.detect_coverage_unchanged(evidence) == []
        assert len(detector.detect(evidence)) == 1

    def test_lcov_report_with_baseline(self, detector, write_artifacts):
        paths = write_artifacts({"coverage_report": ("lcov.info", "SF:a.py\nLH:50\nLF:100\nend_of_record\n")})
        evidence = {
            "test_id": "unit-lcov", "test_type": "unit", "pass_fail": "pass",
            "metadata": {"coverage_baseline": {"lines_covered": 50, "lines_total": 100}},
            **paths,
        }
        assert _types(detector.detect_coverage_unchanged(evidence)) == [("coverage", "high")]


# ═════════════════════════════════════════════════════════════════════════════
# Summary & reports
# ═════════════════════════════════════════════════════════════════════════════


class TestSummary:
    """Verdicts follow the most severe flag."""

    def test_critical_fails(self):
        summary = summarize([{"severity": "critical", "description": "x", "flag_type": "timing"}])
        assert summary["verdict"] == "fail"
        assert summary["recommendation"].startswith("VERIFICATION FAILED")

    def test_high_needs_review(self):
        assert summarize([{"severity": "high", "description": "x"}])["verdict"] == "review"

    def test_clean_passes(self):
        summary = summarize([])
        assert summary["verdict"] == "pass"
        assert summary["total_flags"] == 0

    def test_flag_report_groups_by_severity(self, detector, ui_evidence):
        flags = detector.detect(ui_evidence(console=[], metadata={"expected_tools": ["click"]}))
        report = format_flag_report("ui-login", flags)
        assert report.startswith("# Red Flag Detection Report: ui-login")
        assert "## Critical Flags" in report

    def test_clean_report(self):
        assert "No Red Flags Detected" in format_flag_report("t", [])

    def test_batch_report_table(self):
        report = format_batch_report({"t-1": [{"severity": "high", "description": "x"}], "t-2": []})
        assert "| t-1 | 0 | 1 | 0 | 0 | review |" in report
        assert "| t-2 | 0 | 0 | 0 | 0 | pass |" in report


# ═════════════════════════════════════════════════════════════════════════════
# Persistence
# ═════════════════════════════════════════════════════════════════════════════


class TestRedFlagService:
    """Flags are append-only and resolved exactly once."""

    def test_detection_is_not_duplicated(self, detector, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence(console=[]))
        first = red_flag_service.detect_and_record(evidence.id, detector)
        second = red_flag_service.detect_and_record(evidence.id, detector)
        assert len(first) == len(second) == 1

    def test_list_sorted_by_severity(self, detector, ui_evidence):
        evidence = evidence_service.record_evidence(
            ui_evidence(duration_ms=100, metadata={"expected_tools": ["click"]})
        )
        red_flag_service.detect_and_record(evidence.id, detector)
        severities = [f.severity for f in red_flag_service.list_flags(test_id="ui-login")]
        assert severities == ["critical", "medium"]

    def test_invalid_severity_filter(self):
        with pytest.raises(ValidationError):
            red_flag_service.list_flags(severity="urgent")

    def test_resolve_once(self, detector, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence(console=[]))
        flag = red_flag_service.detect_and_record(evidence.id, detector)[0]
        red_flag_service.resolve_flag(flag.id, "browser log export fixed")
        db.session.commit()
        assert flag.resolved is True
        with pytest.raises(ConflictError):
            red_flag_service.resolve_flag(flag.id, "again")

    def test_resolve_requires_notes(self, detector, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence(console=[]))
        flag = red_flag_service.detect_and_record(evidence.id, detector)[0]
        with pytest.raises(ValidationError):
            red_flag_service.resolve_flag(flag.id, "  ")

    def test_severity_is_immutable(self, detector, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence(console=[]))
        flag = red_flag_service.detect_and_record(evidence.id, detector)[0]
        with pytest.raises(ConflictError):
            flag.severity = "low"

    def test_no_evidence_flags_used_for_verification(self):
        flags = RedFlagDetector.detect_no_evidence("t-9", "EPIC-1")
        red_flag_service.record_flags(flags, test_id="t-9", epic_id="EPIC-1")
        found = red_flag_service.flags_for_verification("t-9", "EPIC-1", None)
        assert [f["flag_type"] for f in found] == ["missing_evidence"]
