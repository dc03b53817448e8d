"""
Independent verification tests.

Covers the verification subsystem bottom-up:
    - ArtifactStore / EvidenceAnalyzer parsing and neutral defaults
    - IntegrityChecker (4 independent checks, accumulated errors)
    - CrossValidator (6 cross-source checks, skip vs degrade)
    - SkepticalAnalyzer patterns
    - confidence scoring and recommendation thresholds
    - IndependentVerifier end-to-end, tier precondition, persisted reports
"""

import os

import pytest

from qa_pipeline.core.exceptions import AnalysisError, ConfigurationError
from qa_pipeline.red_flags.detector import RedFlagDetector
from qa_pipeline.services import evidence_service, red_flag_service, verification_service
from qa_pipeline.verification.confidence import compute_confidence, has_unresolved_critical, recommend
from qa_pipeline.verification.cross_validator import CrossValidator
from qa_pipeline.verification.evidence_analyzer import EvidenceAnalyzer
from qa_pipeline.verification.integrity import IntegrityChecker
from qa_pipeline.verification.reporter import format_verification_report
from qa_pipeline.verification.skeptical import SkepticalAnalyzer
from qa_pipeline.verification.verifier import IndependentVerifier, check_tiers

from tests.conftest import PNG_BYTES


@pytest.fixture()
def analyzer(store):
    return EvidenceAnalyzer(store)


@pytest.fixture()
def verifier(store):
    return IndependentVerifier(store)


def _by_type(results):
    return {r["type"]: r for r in results}


def _flag(severity, resolved=False, flag_type="timing"):
    return {"flag_type": flag_type, "severity": severity, "description": f"{severity} flag",
            "resolved": resolved}


# ═════════════════════════════════════════════════════════════════════════════
# Evidence analyzer
# ═════════════════════════════════════════════════════════════════════════════


class TestEvidenceAnalyzer:
    """Signal extraction never renders a verdict and never raises."""

    def test_console_counts_and_patterns(self, analyzer, write_artifacts):
        paths = write_artifacts({"console_logs": ("console.json", [
            {"level": "error", "message": "Uncaught TypeError: cannot read properties of null"},
            {"type": "warn", "text": "deprecated API"},
            {"level": "info", "message": "ready"},
        ])})
        result = analyzer.analyze_console(paths["console_logs"])
        assert result["error_count"] == 1
        assert result["warning_count"] == 1
        assert result["has_uncaught_errors"] is True
        assert result["critical_errors"] == ["Uncaught TypeError: cannot read properties of null"]
        assert "null_reference" in result["patterns"]

    def test_plain_text_console(self, analyzer, write_artifacts):
        paths = write_artifacts({"console_logs": ("console.log", "[error] boom\n[info] ok\nplain line\n")})
        result = analyzer.analyze_console(paths["console_logs"])
        assert (result["error_count"], result["total"]) == (1, 3)

    def test_bracketed_plain_text_console(self, analyzer, write_artifacts):
        paths = write_artifacts({"console_logs": ("console.log", "[info] page loaded\n[error] boom\n")})
        result = analyzer.analyze_console(paths["console_logs"])
        assert (result["error_count"], result["total"]) == (1, 2)
        assert result["degraded"] is False

    def test_json_console_still_parsed(self, store, write_artifacts):
        paths = write_artifacts({"console_logs": ("console.json", {"logs": [{"level": "warn", "message": "slow"}]})})
        assert store.load_console_logs(paths["console_logs"]) == [{"level": "warning", "message": "slow"}]

    def test_network_signals(self, analyzer, write_artifacts):
        paths = write_artifacts({"network_trace": ("trace.json", [
            {"method": "GET", "url": "/a", "statusCode": 503, "responseTime": 1500},
            {"method": "GET", "url": "/b", "status_code": 401, "response_time": 20},
            {"method": "GET", "url": "/c", "status_code": 200, "response_time": 40},
        ])})
        result = analyzer.analyze_network(paths["network_trace"])
        assert result["request_count"] == 3
        assert result["failed_requests"] == 2
        assert result["server_errors"] == 1
        assert result["auth_failures"] == 1
        assert result["slow_requests"] == 1

    def test_dom_changes(self, analyzer, ui_evidence):
        evidence = ui_evidence()
        result = analyzer.analyze_dom(evidence["dom_snapshot_before"], evidence["dom_snapshot"])
        assert result["change_count"] == result["nodes_added"] + result["nodes_removed"] > 0

    def test_corrupt_network_trace_is_degraded(self, analyzer, write_artifacts):
        paths = write_artifacts({"network_trace": ("network.json", "{not json")})
        result = analyzer.analyze_network(paths["network_trace"])
        assert result["request_count"] == 0
        assert result["degraded"] is True

    def test_unreadable_dom_is_degraded(self, analyzer, ui_evidence, tmp_path):
        evidence = ui_evidence()
        result = analyzer.analyze_dom(evidence["dom_snapshot_before"], str(tmp_path / "gone.html"))
        assert result["degraded"] is True

    def test_absent_dom_pair_is_not_degraded(self, analyzer):
        assert analyzer.analyze_dom(None, None)["degraded"] is False

    def test_unreadable_artifact_returns_neutral_default(self, analyzer, tmp_path):
        result = analyzer.analyze_console(str(tmp_path / "missing.json"))
        assert result["error_count"] == 0
        assert result["total"] == 0
        assert result["degraded"] is True

    def test_invalid_coverage_is_neutral(self, analyzer, write_artifacts):
        paths = write_artifacts({"coverage_report": ("coverage.json", "{not json")})
        result = analyzer.analyze_coverage(paths["coverage_report"])
        assert result["change"] is None
        assert result["proportional"] is True
        assert result["degraded"] is True

    def test_istanbul_coverage(self, store, write_artifacts):
        paths = write_artifacts({"coverage_report": ("coverage.json", {
            "src/a.js": {"s": {"0": 1, "1": 0, "2": 3, "3": 1}},
        })})
        coverage = store.load_coverage(paths["coverage_report"],
                                       {"lines_covered": 2, "lines_total": 4})
        assert coverage["after"]["lines_covered"] == 3
        assert coverage["lines_delta"] == 1
        assert coverage["change"] == 25.0


# ═════════════════════════════════════════════════════════════════════════════
# Integrity
# ═════════════════════════════════════════════════════════════════════════════


class TestIntegrityChecker:
    """Four checks, ANDed, with every error accumulated."""

    def test_clean_evidence_passes(self, store, ui_evidence):
        result = IntegrityChecker(store).check(ui_evidence())
        assert result["passed"] is True
        assert all(result["checks"].values())
        assert result["errors"] == []

    def test_missing_file(self, store, ui_evidence, tmp_path):
        result = IntegrityChecker(store).check(ui_evidence(screenshot_before=str(tmp_path / "nope.png")))
        assert result["passed"] is False
        assert result["checks"]["files_exist"] is False
        assert any("screenshot_before file not found" in e for e in result["errors"])

    def test_out_of_order_timestamps(self, store, ui_evidence):
        evidence = ui_evidence()
        before_mtime = os.stat(evidence["screenshot_before"]).st_mtime
        os.utime(evidence["screenshot_after"], (before_mtime - 30, before_mtime - 30))
        result = IntegrityChecker(store).check(evidence)
        assert result["checks"]["timestamps_sequential"] is False
        assert result["checks"]["files_exist"] is True

    def test_synthetic_capture_warning(self, store, ui_evidence):
        evidence = ui_evidence()
        stamp = os.stat(evidence["screenshot_before"]).st_mtime
        for field in ("screenshot_before", "dom_snapshot_before", "network_trace",
                      "console_logs", "dom_snapshot", "screenshot_after"):
            os.utime(evidence[field], (stamp, stamp))
        result = IntegrityChecker(store).check(evidence)
        assert result["checks"]["timestamps_sequential"] is True
        assert any("capture may be synthetic" in w for w in result["warnings"])

    def test_truncated_screenshot(self, store, ui_evidence, tmp_path):
        evidence = ui_evidence()
        with open(evidence["screenshot_after"], "wb") as fh:
            fh.write(PNG_BYTES[:200])
        result = IntegrityChecker(store).check(evidence)
        assert result["checks"]["sizes_reasonable"] is False

    def test_wrong_magic_bytes(self, store, ui_evidence):
        evidence = ui_evidence()
        with open(evidence["screenshot_before"], "wb") as fh:
            fh.write(b"GIF89a" + b"\0" * 12000)
        result = IntegrityChecker(store).check(evidence)
        assert result["checks"]["formats_correct"] is False
        assert any("signature" in e for e in result["errors"])

    def test_errors_accumulate_across_checks(self, store, ui_evidence, tmp_path):
        evidence = ui_evidence(screenshot_before=str(tmp_path / "nope.png"))
        with open(evidence["screenshot_after"], "wb") as fh:
            fh.write(b"tiny")
        result = IntegrityChecker(store).check(evidence)
        failed = {k for k, ok in result["checks"].items() if not ok}
        assert {"files_exist", "sizes_reasonable", "formats_correct"} <= failed
        assert len(result["errors"]) >= 3

    def test_lcov_without_records(self, store, write_artifacts):
        paths = write_artifacts({"coverage_report": ("coverage.lcov", "this is not a coverage report at all")})
        result = IntegrityChecker(store).check({"test_type": "unit", **paths})
        assert result["checks"]["formats_correct"] is False
        assert any("no lcov SF:/LF: records" in e for e in result["errors"])

    def test_valid_lcov_passes_format_check(self, store, write_artifacts):
        paths = write_artifacts({"coverage_report": ("lcov.info", "SF:a.py\nLH:50\nLF:100\nend_of_record\n")})
        assert IntegrityChecker(store).check({"test_type": "unit", **paths})["checks"]["formats_correct"] is True

    def test_read_failure_does_not_hide_later_format_errors(self, store, ui_evidence, monkeypatch):
        evidence = ui_evidence()
        with open(evidence["screenshot_after"], "wb") as fh:
            fh.write(b"GIF89a" + b"\0" * 12000)
        read_text = store.read_text

        def _read_text(kind, path):
            if kind == "network_trace":
                raise AnalysisError(kind, path, "permission denied")
            return read_text(kind, path)

        monkeypatch.setattr(store, "read_text", _read_text)
        result = IntegrityChecker(store).check(evidence)
        assert result["checks"]["formats_correct"] is False
        assert "network_trace could not be read: permission denied" in result["errors"]
        assert any("screenshot_after content does not match" in e for e in result["errors"])

    def test_idempotent(self, store, ui_evidence):
        evidence = ui_evidence()
        checker = IntegrityChecker(store)
        assert checker.check(evidence) == checker.check(evidence)


# ═════════════════════════════════════════════════════════════════════════════
# Cross-validation
# ═════════════════════════════════════════════════════════════════════════════


class TestCrossValidator:
    """Independent sources must agree; absent inputs are skipped."""

    def test_consistent_ui_evidence(self, analyzer, ui_evidence):
        results = CrossValidator(analyzer).validate(ui_evidence())
        assert all(r["matched"] for r in results)
        assert {"screenshot_vs_console", "network_vs_ui", "error_vs_result"} <= set(_by_type(results))
        assert "http_vs_schema" not in _by_type(results)

    def test_error_screenshot_clean_console(self, analyzer, ui_evidence):
        evidence = ui_evidence(metadata={"screenshot": {"contains_error": True}})
        check = _by_type(CrossValidator(analyzer).validate(evidence))["screenshot_vs_console"]
        assert check["matched"] is False
        assert check["severity"] == "high"

    def test_malformed_http_exchange(self, analyzer, api_evidence):
        evidence = api_evidence(response={"status": "ok"})
        check = _by_type(CrossValidator(analyzer).validate(evidence))["http_vs_schema"]
        assert check["matched"] is False
        assert check["severity"] == "medium"
        assert len(check["evidence"]["problems"]) == 2

    def test_duration_far_from_history(self, analyzer, api_evidence):
        results = CrossValidator(analyzer).validate(api_evidence(duration_ms=600), history=[200, 200, 200])
        check = _by_type(results)["duration_vs_historical"]
        assert check["matched"] is False
        assert check["severity"] == "high"

    def test_duration_without_history_matches(self, analyzer, api_evidence):
        check = _by_type(CrossValidator(analyzer).validate(api_evidence()))["duration_vs_historical"]
        assert check["matched"] is True

    def test_coverage_barely_moved(self, analyzer, unit_evidence):
        check = _by_type(CrossValidator(analyzer).validate(unit_evidence(before=100, after=100)))[
            "coverage_vs_scope"]
        assert check["matched"] is False
        assert check["severity"] == "low"

    def test_network_without_dom_change(self, analyzer, ui_evidence):
        evidence = ui_evidence()
        evidence["dom_snapshot"] = evidence["dom_snapshot_before"]
        check = _by_type(CrossValidator(analyzer).validate(evidence))["network_vs_ui"]
        assert check["matched"] is False

    def test_critical_console_errors_on_pass(self, analyzer, ui_evidence):
        console = [{"level": "error", "message": "Unhandled promise rejection: 500"}]
        check = _by_type(CrossValidator(analyzer).validate(ui_evidence(console=console)))["error_vs_result"]
        assert check["matched"] is False

    def test_corrupt_network_trace_is_skipped(self, analyzer, ui_evidence):
        evidence = ui_evidence()
        with open(evidence["network_trace"], "w") as fh:
            fh.write("{not json")
        check = _by_type(CrossValidator(analyzer).validate(evidence))["network_vs_ui"]
        assert check["matched"] is True
        assert check["description"].startswith("Validation skipped")

    def test_unparseable_coverage_is_skipped(self, analyzer, write_artifacts):
        paths = write_artifacts({"coverage_report": ("coverage.lcov", "garbage")})
        evidence = {"test_type": "unit", "pass_fail": "pass", **paths}
        check = _by_type(CrossValidator(analyzer).validate(evidence))["coverage_vs_scope"]
        assert check["matched"] is True

    def test_internal_error_degrades_to_match(self, analyzer, ui_evidence, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("parser exploded")

        monkeypatch.setattr(analyzer, "analyze_network", _boom)
        check = _by_type(CrossValidator(analyzer).validate(ui_evidence()))["network_vs_ui"]
        assert check["matched"] is True
        assert "Validation skipped" in check["description"]


# ═════════════════════════════════════════════════════════════════════════════
# Skeptical analysis
# ═════════════════════════════════════════════════════════════════════════════


class TestSkepticalAnalyzer:
    """Plausible-looking evidence that still smells fabricated."""

    def _patterns(self, analyzer, evidence, flags=None):
        result = SkepticalAnalyzer(analyzer).analyze(evidence, flags)
        return {p["type"]: p for p in result["patterns"]}, result

    def test_clean_evidence(self, analyzer, ui_evidence):
        patterns, result = self._patterns(analyzer, ui_evidence())
        assert patterns == {}
        assert result["suspicious"] is False

    def test_too_fast_api(self, analyzer, api_evidence):
        patterns, result = self._patterns(analyzer, api_evidence(duration_ms=10))
        assert patterns["too_fast"]["severity"] == "high"
        assert result["recommend_manual_review"] is True

    def test_too_perfect(self, analyzer, unit_evidence):
        patterns, _ = self._patterns(analyzer, unit_evidence(before=150, after=200, total=200))
        assert "too_perfect" in patterns

    def test_no_artifacts(self, analyzer):
        evidence = {"test_type": "ui", "pass_fail": "pass", "duration_ms": 3000}
        patterns, _ = self._patterns(analyzer, evidence)
        assert patterns["missing_artifacts"]["severity"] == "high"

    def test_zero_network(self, analyzer, ui_evidence, write_artifacts):
        evidence = ui_evidence()
        evidence.update(write_artifacts({"network_trace": ("empty_trace.json", [])}))
        patterns, _ = self._patterns(analyzer, evidence)
        assert patterns["zero_network"]["severity"] == "high"

    def test_zero_dom_changes(self, analyzer, ui_evidence):
        evidence = ui_evidence()
        evidence["dom_snapshot"] = evidence["dom_snapshot_before"]
        patterns, _ = self._patterns(analyzer, evidence)
        assert "zero_dom_changes" in patterns

    def test_red_flags_ignored(self, analyzer, ui_evidence):
        patterns, _ = self._patterns(analyzer, ui_evidence(), [_flag("critical")])
        assert patterns["red_flags_ignored"]["severity"] == "high"

    def test_resolved_flags_are_not_ignored(self, analyzer, ui_evidence):
        patterns, _ = self._patterns(analyzer, ui_evidence(), [_flag("critical", resolved=True)])
        assert "red_flags_ignored" not in patterns

    def test_network_longer_than_test(self, analyzer, ui_evidence):
        patterns, _ = self._patterns(analyzer, ui_evidence(duration_ms=150))
        assert "inconsistent_timing" in patterns

    def test_empty_logs(self, analyzer, ui_evidence):
        patterns, _ = self._patterns(analyzer, ui_evidence(console=[]))
        assert patterns["empty_logs"]["severity"] == "low"

    @pytest.mark.parametrize("field", ["network_trace", "dom_snapshot", "console_logs"])
    def test_unreadable_artifact_raises_no_pattern(self, analyzer, ui_evidence, field):
        evidence = ui_evidence()
        with open(evidence[field], "wb") as fh:
            fh.write(b"\xff\xfe\x00 not text")
        patterns, _ = self._patterns(analyzer, evidence)
        assert not {"zero_network", "zero_dom_changes", "empty_logs", "inconsistent_timing"} & set(patterns)

    def test_idempotent(self, analyzer, ui_evidence):
        evidence = ui_evidence(duration_ms=100)
        skeptic = SkepticalAnalyzer(analyzer)
        assert skeptic.analyze(evidence) == skeptic.analyze(evidence)


# ═════════════════════════════════════════════════════════════════════════════
# Confidence
# ═════════════════════════════════════════════════════════════════════════════


def _score(**overrides):
    kwargs = {
        "red_flags": [],
        "cross_validation": [],
        "missing_artifacts": [],
        "skeptical_patterns": [],
        "integrity_passed": True,
    }
    kwargs.update(overrides)
    return compute_confidence(**kwargs)[0]


class TestConfidence:
    """Score arithmetic, clamping and the decision thresholds."""

    def test_clean_evidence_clamps_at_100(self):
        assert _score() == 100.0

    def test_flag_weights(self):
        assert _score(red_flags=[_flag("critical")]) == 60.0
        assert _score(red_flags=[_flag("high")]) == 90.0
        assert _score(red_flags=[_flag("medium")]) == 100.0

    def test_resolved_flags_do_not_count(self):
        assert _score(red_flags=[_flag("critical", resolved=True)]) == 100.0

    def test_mismatch_scaled_by_severity(self):
        mismatch = [{"matched": False, "severity": "high"}]
        assert _score(cross_validation=mismatch, integrity_passed=None) == 70.0

    def test_missing_artifacts_drop_bonus(self):
        assert _score(missing_artifacts=["screenshot_after"]) == 75.0

    def test_integrity_failure(self):
        assert _score(integrity_passed=False) == 70.0

    def test_clamped_at_zero(self):
        assert _score(red_flags=[_flag("critical")] * 4) == 0.0

    def test_monotonic_in_flag_severity_and_count(self):
        ladder = [
            [],
            [_flag("low")],
            [_flag("medium")],
            [_flag("high")],
            [_flag("high"), _flag("high")],
            [_flag("critical")],
            [_flag("critical"), _flag("high")],
            [_flag("critical"), _flag("critical")],
        ]
        scores = [_score(red_flags=flags, integrity_passed=None) for flags in ladder]
        assert scores == sorted(scores, reverse=True)

    def test_recommendation_thresholds(self):
        assert recommend(95.0, False) == "accept"
        assert recommend(90.0, False) == "accept"
        assert recommend(75.0, False) == "manual_review"
        assert recommend(59.9, False) == "reject"

    def test_unresolved_critical_always_rejects(self):
        assert recommend(100.0, True) == "reject"
        assert has_unresolved_critical([_flag("critical")]) is True
        assert has_unresolved_critical([_flag("critical", resolved=True)]) is False

    def test_injected_thresholds(self):
        assert recommend(85.0, False, {"accept": 80.0, "reject": 50.0}) == "accept"


# ═════════════════════════════════════════════════════════════════════════════
# Verifier
# ═════════════════════════════════════════════════════════════════════════════


class TestTierPrecondition:
    """The verifier must run on a strictly more capable tier."""

    def test_equal_tiers_fail_construction(self, store, monkeypatch):
        loads = []
        monkeypatch.setattr(store, "read_bytes", lambda *a, **k: loads.append(a))
        with pytest.raises(ConfigurationError):
            IndependentVerifier(store, verifier_tier="balanced", executor_tier="balanced")
        assert loads == []

    def test_weaker_verifier_fails(self, store):
        with pytest.raises(ConfigurationError):
            IndependentVerifier(store, verifier_tier="fast", executor_tier="strong")

    def test_unknown_tier_fails(self):
        with pytest.raises(ConfigurationError):
            check_tiers("gigantic", "fast")

    def test_stronger_verifier_is_accepted(self, store):
        verifier = IndependentVerifier(store, verifier_tier="strong", executor_tier="balanced")
        assert verifier.verifier_model == "local-stub"


class TestIndependentVerifier:
    """End-to-end verdicts over real artifact files."""

    def test_clean_ui_evidence_is_accepted(self, verifier, ui_evidence):
        result = verifier.verify(ui_evidence(), [])
        assert result["recommendation"] == "accept"
        assert result["verified"] is True
        assert result["confidence_score"] >= 90
        assert "**Next Steps:**" in result["reasoning"]

    def test_no_evidence_rejects_with_zero(self, verifier):
        result = verifier.verify(None, [], test_id="t-1", epic_id="EPIC-1")
        assert result["recommendation"] == "reject"
        assert result["confidence_score"] == 0.0
        assert result["concerns"] == ["No evidence recorded for test t-1"]

    def test_missing_artifact_never_accepted(self, verifier, store, ui_evidence):
        evidence = ui_evidence(skip=("screenshot_after",))
        flags = RedFlagDetector(store).detect(evidence)
        assert any(f["severity"] == "critical" for f in flags)
        result = verifier.verify(evidence, flags)
        assert result["recommendation"] == "reject"
        assert "Required artifact missing: screenshot_after" in result["concerns"]

    def test_screenshot_console_mismatch_costs_at_least_15(self, verifier, ui_evidence):
        baseline = verifier.verify(ui_evidence(), [])
        mismatch = verifier.verify(
            ui_evidence(metadata={"screenshot": {"contains_error": True, "error_text": "Payment failed"}}), [],
        )
        check = _by_type(mismatch["cross_validation_results"])["screenshot_vs_console"]
        assert check["matched"] is False
        assert check["severity"] == "high"
        assert baseline["confidence_score"] - mismatch["confidence_score"] >= 15

    def test_api_too_fast_scenario(self, verifier, store, api_evidence):
        evidence = api_evidence(duration_ms=10)
        flags = RedFlagDetector(store).detect(evidence)
        assert [(f["flag_type"], f["severity"]) for f in flags] == [("timing", "medium")]
        result = verifier.verify(evidence, flags)
        assert "too_fast" in {p["type"] for p in result["skeptical"]["patterns"]}
        assert result["recommendation"] != "accept"

    def test_unit_coverage_unchanged_scenario(self, verifier, store, unit_evidence):
        evidence = unit_evidence(before=120, after=120)
        flags = RedFlagDetector(store).detect(evidence)
        assert ("coverage", "high") in [(f["flag_type"], f["severity"]) for f in flags]
        result = verifier.verify(evidence, flags)
        assert result["recommendation"] != "accept"

    def test_accept_implies_threshold_and_no_critical(self, verifier, store, ui_evidence, api_evidence):
        samples = [
            ui_evidence(),
            ui_evidence(console=[]),
            ui_evidence(duration_ms=100),
            api_evidence(),
            api_evidence(duration_ms=10),
        ]
        for evidence in samples:
            flags = RedFlagDetector(store).detect(evidence)
            result = verifier.verify(evidence, flags)
            if result["recommendation"] == "accept":
                assert result["confidence_score"] >= 90
                assert not has_unresolved_critical(flags)

    def test_corrupt_network_trace_is_charged_once(self, verifier, store, ui_evidence):
        evidence = ui_evidence()
        with open(evidence["network_trace"], "w") as fh:
            fh.write("{not json")
        flags = RedFlagDetector(store).detect(evidence)
        result = verifier.verify(evidence, flags)
        breakdown = result["confidence_breakdown"]
        assert breakdown["cross_validation"] == 0
        assert breakdown["skeptical"] == 0
        assert breakdown["integrity"] < 0
        assert result["skeptical"]["patterns"] == []

    def test_unparseable_coverage_is_never_accepted(self, verifier, store, write_artifacts):
        paths = write_artifacts({"coverage_report": ("coverage.lcov", "this is not a coverage report at all")})
        evidence = {"test_id": "unit-x", "epic_id": "EPIC-1", "test_type": "unit", "test_name": "x",
                    "pass_fail": "pass", "duration_ms": 1200, "metadata": {}, **paths}
        flags = RedFlagDetector(store).detect(evidence)
        assert ("missing_evidence", "critical") in [(f["flag_type"], f["severity"]) for f in flags]
        result = verifier.verify(evidence, flags)
        assert result["recommendation"] == "reject"
        assert result["integrity"]["passed"] is False

    def test_integrity_crash_is_neutral(self, verifier, ui_evidence, monkeypatch):
        def _boom(evidence):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(verifier.integrity_checker, "check", _boom)
        result = verifier.verify(ui_evidence(), [])
        assert result["integrity"]["passed"] is None
        assert result["confidence_breakdown"]["integrity"] == 0
        assert result["confidence_breakdown"]["comprehensive_bonus"] == 0.0

    def test_injected_weights(self, store, ui_evidence):
        weights = {
            "critical": 50.0, "high": 20.0, "medium": 10.0, "low": 0.0,
            "cross_validation": 40.0, "missing_artifact": 25.0, "skeptical_high": 20.0,
            "skeptical_other": 10.0, "integrity_failure": 30.0, "comprehensive_bonus": 0.0,
        }
        verifier = IndependentVerifier(store, weights=weights)
        result = verifier.verify(ui_evidence(metadata={"screenshot": {"contains_error": True}}), [])
        assert result["confidence_score"] == 20.0
        assert result["recommendation"] == "reject"


class TestVerificationService:
    """Each verification writes a new immutable report row."""

    def test_verify_persists_report(self, verifier, store, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence(console=[]))
        red_flag_service.detect_and_record(evidence.id, RedFlagDetector(store))
        report = verification_service.verify_evidence(evidence.id, verifier)
        assert report.recommendation == "reject"
        data = report.to_dict()
        assert data["evidence_id"] == evidence.id
        assert data["red_flags_found"]["critical"] == 1

    def test_reverification_appends(self, verifier, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence())
        verification_service.verify_evidence(evidence.id, verifier)
        verification_service.verify_evidence(evidence.id, verifier)
        assert len(verification_service.list_reports(test_id="ui-login")) == 2

    def test_markdown_rendering(self, verifier, ui_evidence):
        evidence = evidence_service.record_evidence(ui_evidence())
        report = verification_service.verify_evidence(evidence.id, verifier).to_dict()
        markdown = format_verification_report(report)
        assert markdown.startswith("# Verification Report: ui-login")
        assert "**Recommendation:** ACCEPT" in markdown
