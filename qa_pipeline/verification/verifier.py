"""
QA Verification Pipeline
Independent verifier.

Fuses integrity, cross-validation, skeptical analysis and red flags into a
0-100 confidence score and an accept / reject / manual_review decision.

The verifier only reads persisted evidence. It never executes tests and never
calls a model; ``verifier_model`` records which tier the verdict is attributed
to, and that tier must sit strictly above the executor's.

Flow:
    1. no evidence row          → reject, confidence 0
    2. integrity check          → feeds scoring, never short-circuits
    3. cross-validation + skeptical analysis
    4. confidence (see verification.confidence)
    5. recommendation + plain-language summary / reasoning
"""

import logging

from qa_pipeline.ai.model_selector import ModelSelector, tier_rank
from qa_pipeline.config import (
    CONFIDENCE_WEIGHTS,
    RECOMMENDATION_THRESHOLDS,
    REQUIRED_ARTIFACTS,
    SEVERITY_MULTIPLIERS,
    TIMING_FLOORS_MS,
)
from qa_pipeline.core.exceptions import ConfigurationError
from qa_pipeline.models.evidence import ARTIFACT_FIELDS
from qa_pipeline.models.red_flags import SEVERITY_RANK
from qa_pipeline.red_flags.detector import summarize
from qa_pipeline.verification import reporter
from qa_pipeline.verification.artifacts import ArtifactStore
from qa_pipeline.verification.confidence import compute_confidence, has_unresolved_critical, recommend
from qa_pipeline.verification.cross_validator import CrossValidator
from qa_pipeline.verification.evidence_analyzer import EvidenceAnalyzer
from qa_pipeline.verification.integrity import IntegrityChecker
from qa_pipeline.verification.skeptical import SkepticalAnalyzer

logger = logging.getLogger(__name__)


def check_tiers(verifier_tier: str, executor_tier: str):
    """Raise ConfigurationError unless the verifier outranks the executor."""
    v_rank, e_rank = tier_rank(verifier_tier), tier_rank(executor_tier)
    if v_rank == e_rank:
        raise ConfigurationError(
            f"Verifier tier '{verifier_tier}' must differ from executor tier '{executor_tier}'"
        )
    if v_rank < e_rank:
        raise ConfigurationError(
            f"Verifier tier '{verifier_tier}' is less capable than executor tier '{executor_tier}'"
        )


def _evidence_reviewed(evidence: dict, missing: list[str]) -> dict:
    present = [f for f in ARTIFACT_FIELDS if evidence.get(f)]
    return {
        "evidence_id": evidence.get("id"),
        "artifacts": present,
        "total_artifacts": len(present),
        "screenshots": sum(1 for f in present if f.startswith("screenshot")),
        "logs": 1 if "console_logs" in present else 0,
        "traces": sum(1 for f in present if f in ("network_trace", "http_request", "http_response")),
        "missing_artifacts": missing,
    }


class IndependentVerifier:
    """Second-opinion verifier over one test's persisted evidence."""

    def __init__(
        self,
        store: ArtifactStore,
        *,
        verifier_tier: str = "balanced",
        executor_tier: str = "fast",
        selector: ModelSelector | None = None,
        required_artifacts=REQUIRED_ARTIFACTS,
        timing_floors=TIMING_FLOORS_MS,
        weights=CONFIDENCE_WEIGHTS,
        multipliers=SEVERITY_MULTIPLIERS,
        thresholds=RECOMMENDATION_THRESHOLDS,
    ):
        check_tiers(verifier_tier, executor_tier)
        self.verifier_tier = verifier_tier
        self.executor_tier = executor_tier
        self.verifier_model = (selector or ModelSelector()).model_for(verifier_tier)

        self.store = store
        self.required_artifacts = required_artifacts
        self.weights = weights
        self.multipliers = multipliers
        self.thresholds = thresholds

        analyzer = EvidenceAnalyzer(store)
        self.integrity_checker = IntegrityChecker(store)
        self.cross_validator = CrossValidator(analyzer)
        self.skeptical_analyzer = SkepticalAnalyzer(analyzer, required_artifacts, timing_floors)

    def verify(
        self,
        evidence: dict | None,
        red_flags: list[dict],
        history: list[int] | None = None,
        *,
        test_id: str | None = None,
        epic_id: str | None = None,
    ) -> dict:
        """Verify one evidence set. Always returns a complete result dict."""
        if evidence is None:
            return self._no_evidence(test_id, epic_id, red_flags)

        test_id = evidence.get("test_id", test_id)
        epic_id = evidence.get("epic_id", epic_id)
        log_extra = {"test_id": test_id, "epic_id": epic_id, "stage": "verification"}

        missing = self._missing_artifacts(evidence)
        integrity = self._run_integrity(evidence)
        cross_validation = self._run_cross_validation(evidence, history)
        skeptical = self._run_skeptical(evidence, red_flags)

        score, breakdown = compute_confidence(
            red_flags=red_flags,
            cross_validation=cross_validation,
            missing_artifacts=missing,
            skeptical_patterns=skeptical["patterns"],
            integrity_passed=integrity["passed"],
            weights=self.weights,
            multipliers=self.multipliers,
        )
        recommendation = recommend(score, has_unresolved_critical(red_flags), self.thresholds)

        unresolved = sorted(
            (f for f in red_flags if not f.get("resolved")),
            key=lambda f: SEVERITY_RANK.get(f["severity"], 99),
        )
        flag_summary = summarize(unresolved)
        concerns = self._concerns(unresolved, cross_validation, skeptical, integrity, missing)
        evidence_reviewed = _evidence_reviewed(evidence, missing)

        reasoning = reporter.build_reasoning(
            evidence_reviewed, integrity, cross_validation, flag_summary,
            [f["description"] for f in unresolved], skeptical, breakdown, self.thresholds,
        )
        recommendations = reporter.build_recommendations(recommendation, flag_summary, skeptical, concerns)
        reasoning += "\n\n**Next Steps:**\n" + "\n".join(f"- {s}" for s in recommendations)

        logger.info(
            "Verified %s: confidence=%.1f recommendation=%s", test_id, score, recommendation,
            extra=log_extra,
        )
        return {
            "test_id": test_id,
            "epic_id": epic_id,
            "evidence_id": evidence.get("id"),
            "verified": recommendation == "accept",
            "confidence_score": score,
            "recommendation": recommendation,
            "evidence_reviewed": evidence_reviewed,
            "cross_validation_results": cross_validation,
            "red_flags_found": {**flag_summary, "flags": unresolved},
            "integrity": integrity,
            "skeptical": skeptical,
            "confidence_breakdown": breakdown,
            "summary": reporter.build_summary(recommendation, score, concerns),
            "reasoning": reasoning,
            "concerns": concerns,
            "recommendations": recommendations,
            "verifier_model": self.verifier_model,
        }

    # ── Steps ────────────────────────────────────────────────────────────

    def _missing_artifacts(self, evidence: dict) -> list[str]:
        required = self.required_artifacts.get(evidence.get("test_type"), ())
        return [f for f in required if not evidence.get(f) or not self.store.exists(evidence[f])]

    def _run_integrity(self, evidence: dict) -> dict:
        try:
            return self.integrity_checker.check(evidence)
        except Exception as exc:
            logger.exception("Integrity check degraded for %s", evidence.get("test_id"))
            return {"passed": None, "checks": {}, "errors": [f"Integrity check skipped: {exc}"],
                    "warnings": []}

    def _run_cross_validation(self, evidence: dict, history) -> list[dict]:
        try:
            return self.cross_validator.validate(evidence, history)
        except Exception:
            logger.exception("Cross-validation degraded for %s", evidence.get("test_id"))
            return []

    def _run_skeptical(self, evidence: dict, red_flags) -> dict:
        try:
            return self.skeptical_analyzer.analyze(evidence, red_flags)
        except Exception:
            logger.exception("Skeptical analysis degraded for %s", evidence.get("test_id"))
            return {"suspicious": False, "concerns": [], "patterns": [], "recommend_manual_review": False}

    @staticmethod
    def _concerns(unresolved, cross_validation, skeptical, integrity, missing) -> list[str]:
        concerns = [f["description"] for f in unresolved if f["severity"] in ("critical", "high")]
        concerns += [r["description"] for r in cross_validation if not r["matched"]]
        concerns += skeptical["concerns"]
        if integrity["passed"] is False:
            concerns += integrity["errors"]
        concerns += [f"Required artifact missing: {m}" for m in missing]
        return concerns

    def _no_evidence(self, test_id, epic_id, red_flags) -> dict:
        logger.warning("No evidence for %s - rejecting", test_id,
                       extra={"test_id": test_id, "epic_id": epic_id, "stage": "verification"})
        flag_summary = summarize(red_flags)
        concern = f"No evidence recorded for test {test_id}"
        breakdown = {"base": 100.0, "no_evidence": -100.0, "raw": 0.0, "final": 0.0}
        recommendations = reporter.build_recommendations("reject", flag_summary, {}, [concern])
        return {
            "test_id": test_id,
            "epic_id": epic_id,
            "evidence_id": None,
            "verified": False,
            "confidence_score": 0.0,
            "recommendation": "reject",
            "evidence_reviewed": {"total_artifacts": 0, "artifacts": [], "missing_artifacts": []},
            "cross_validation_results": [],
            "red_flags_found": {**flag_summary, "flags": red_flags},
            "integrity": {"passed": False, "checks": {}, "errors": ["No evidence"], "warnings": []},
            "skeptical": {"suspicious": True, "concerns": [concern], "patterns": [],
                          "recommend_manual_review": False},
            "confidence_breakdown": breakdown,
            "summary": reporter.build_summary("reject", 0.0, [concern]),
            "reasoning": (
                "**Evidence Review:**\n- No evidence row exists for this test; "
                "the reported result cannot be trusted.\n\n**Next Steps:**\n"
                + "\n".join(f"- {s}" for s in recommendations)
            ),
            "concerns": [concern],
            "recommendations": recommendations,
            "verifier_model": self.verifier_model,
        }
