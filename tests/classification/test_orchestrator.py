import logging
import threading

import pytest

from tariffgate.classification import (
    BasicHSCodeValidator,
    FinalDecision,
    ProductContext,
    ThresholdRegistry,
    ThresholdRouter,
    determine_final_decision,
    identify_missing_fields,
)
from tariffgate.classification.orchestrator import ALL_SOURCES_FAILED, FAN_OUT_CANCELLED
from tariffgate.compliance import ComplianceResult, RiskLevel
from tariffgate.errors import PipelineStageError
from tariffgate.observability import current_run_id, run_scope

T_SHIRT = ProductContext(
    product_description="Cotton knit t-shirt",
    product_category="Textiles",
    origin_country="BD",
    destination_country="US",
    materials=("cotton",),
)
TEDDY = ProductContext(
    product_description="Plush teddy bear",
    origin_country="DE",
    destination_country="US",
)


class ExplodingValidator(BasicHSCodeValidator):
    def validate_hs_code(self, context):
        if context.product_description == "explode":
            raise RuntimeError("validator offline")
        return super().validate_hs_code(context)


class ExplodingChecker:
    def check_compliance(self, check):
        raise RuntimeError("restriction store unavailable")


class TestFanOut:
    def test_falls_back_to_next_source_on_failure(self, build_orchestrator, answering, failing):
        orchestrator = build_orchestrator({"openai": failing(), "anthropic": answering("6109.10", 90)})

        outcome = orchestrator.classify(T_SHIRT)

        assert outcome.success is True
        assert outcome.sources_attempted == ["openai", "anthropic"]
        assert outcome.fallback_used is True
        assert outcome.source == "anthropic"
        assert outcome.hs_code == "6109.10"
        assert outcome.decision.confidence == pytest.approx(85.5)
        assert outcome.compliance.risk_level == RiskLevel.MEDIUM
        assert outcome.final_decision == FinalDecision.REVIEW_REQUIRED

    def test_non_finite_confidence_is_treated_as_a_failed_source(self, build_orchestrator, answering):
        orchestrator = build_orchestrator(
            {"openai": answering("9302.00", float("nan")), "anthropic": answering("6109.10", 90)}
        )

        outcome = orchestrator.classify(T_SHIRT)

        assert outcome.sources_attempted == ["openai", "anthropic"]
        assert outcome.source == "anthropic"
        assert outcome.hs_code == "6109.10"
        assert outcome.decision.confidence == pytest.approx(85.5)

    def test_confident_first_source_stops_fan_out(self, build_orchestrator, answering):
        calls = []
        orchestrator = build_orchestrator(
            {"openai": answering("6109.10", 95, calls, "openai"), "anthropic": answering("6110.20", 99, calls, "anthropic")}
        )

        outcome = orchestrator.classify(T_SHIRT)

        assert calls == ["openai"]
        assert outcome.sources_attempted == ["openai"]
        assert outcome.fallback_used is False

    def test_keeps_highest_weighted_answer_below_early_exit(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("6109.10", 60), "anthropic": answering("6110.20", 70)})

        outcome = orchestrator.classify(T_SHIRT)

        assert outcome.sources_attempted == ["openai", "anthropic"]
        assert outcome.source == "anthropic"
        assert outcome.hs_code == "6110.20"
        assert outcome.fallback_used is True

    def test_primary_answer_kept_when_fallback_is_weaker(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("6109.10", 70), "anthropic": answering("6110.20", 60)})

        outcome = orchestrator.classify(T_SHIRT)

        assert outcome.source == "openai"
        assert outcome.fallback_used is False

    def test_disabled_sources_are_never_called(self, build_orchestrator, answering):
        calls = []
        orchestrator = build_orchestrator(
            {"customs": answering("6109.10", 99, calls, "customs"), "zonos": answering("6109.10", 90, calls, "zonos")}
        )

        outcome = orchestrator.classify(T_SHIRT)

        assert calls == ["zonos"]
        assert outcome.sources_attempted == ["zonos"]

    @pytest.mark.parametrize("broken", ["raises", "empty"])
    def test_all_sources_failing_is_a_structured_failure(self, build_orchestrator, failing, broken):
        func = failing() if broken == "raises" else (lambda request: None)
        orchestrator = build_orchestrator({"openai": func, "anthropic": func})

        outcome = orchestrator.classify(T_SHIRT)

        assert outcome.success is False
        assert outcome.error == ALL_SOURCES_FAILED
        assert outcome.sources_attempted == ["openai", "anthropic"]
        assert outcome.final_decision is None
        assert outcome.run_id

    def test_cancelled_before_start(self, build_orchestrator, answering):
        cancel = threading.Event()
        cancel.set()
        orchestrator = build_orchestrator({"openai": answering("6109.10", 95)})

        outcome = orchestrator.classify(T_SHIRT, cancel_event=cancel)

        assert outcome.success is False
        assert outcome.error == FAN_OUT_CANCELLED
        assert outcome.sources_attempted == []

    def test_cancel_stops_remaining_sources(self, build_orchestrator, answering):
        cancel = threading.Event()
        calls = []

        def first(request):
            calls.append("openai")
            cancel.set()
            return {"hsCode": "6109.10", "confidence": 50}

        orchestrator = build_orchestrator({"openai": first, "anthropic": answering("6110.20", 99, calls, "anthropic")})

        outcome = orchestrator.classify(T_SHIRT, cancel_event=cancel)

        assert calls == ["openai"]
        assert outcome.success is True
        assert outcome.hs_code == "6109.10"


class TestStageFailures:
    def test_validation_failure_propagates(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("6109.10", 95)}, validator=ExplodingValidator())

        with pytest.raises(PipelineStageError) as excinfo:
            orchestrator.classify(ProductContext("explode", destination_country="US"))

        assert excinfo.value.stage == "validation"

    def test_compliance_failure_propagates(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("6109.10", 95)}, checker=ExplodingChecker())

        with pytest.raises(PipelineStageError) as excinfo:
            orchestrator.classify(T_SHIRT)

        assert excinfo.value.stage == "compliance"
        assert "restriction store unavailable" in str(excinfo.value)


class TestDisposition:
    def test_prohibited_goods_are_escalated(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("9302.00", 95)})

        outcome = orchestrator.classify(ProductContext("Hunting rifle", origin_country="DE", destination_country="US"))

        assert outcome.compliance.compliant is False
        assert outcome.compliance.risk_level == RiskLevel.CRITICAL
        assert outcome.final_decision == FinalDecision.ESCALATED

    def test_dual_use_electronics_are_escalated(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("8517.12.00", 92)})
        phone = ProductContext(
            "Smartphone", product_category="Electronics", origin_country="KR", destination_country="US"
        )

        outcome = orchestrator.classify(phone)

        assert [r.id for r in outcome.compliance.restrictions] == ["general-dual-use"]
        assert outcome.final_decision == FinalDecision.ESCALATED

    def test_low_risk_without_thresholds_is_approved(self, build_orchestrator, answering):
        orchestrator = build_orchestrator(
            {"openai": answering("9503.00", 95)}, router=ThresholdRouter(ThresholdRegistry([]))
        )

        outcome = orchestrator.classify(TEDDY)

        assert outcome.compliance.risk_level == RiskLevel.LOW
        assert outcome.threshold_results == []
        assert outcome.final_decision == FinalDecision.APPROVED

    def test_very_low_confidence_is_rejected(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("9503.00", 30)})

        outcome = orchestrator.classify(TEDDY)

        assert outcome.assessment.final_score < 50
        assert [r.threshold.id for r in outcome.threshold_results] == ["escalate-very-low"]
        assert outcome.final_decision == FinalDecision.REJECTED

    def test_missing_fields_are_reported(self, build_orchestrator, answering):
        outcome = build_orchestrator({"openai": answering("9503.00", 95)}).classify(TEDDY)

        assert outcome.missing_fields == [
            "productName",
            "productCategory",
            "value",
            "weight",
            "materials",
            "intendedUse",
        ]

    def test_bound_run_id_is_reused(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("9503.00", 95)})
        with run_scope("run-fixed"):
            outcome = orchestrator.classify(TEDDY)

        assert outcome.run_id == "run-fixed"


class TestFinalDecision:
    @staticmethod
    def _compliance(risk):
        return ComplianceResult(compliant=True, restrictions=[], warnings=[], requirements=[], risk_level=risk)

    def test_medium_risk_without_thresholds_needs_review(self):
        assert determine_final_decision([], self._compliance(RiskLevel.MEDIUM)) == FinalDecision.REVIEW_REQUIRED

    def test_high_risk_dominates_thresholds(self):
        results = ThresholdRouter().evaluate_thresholds(97)

        assert determine_final_decision(results, self._compliance(RiskLevel.HIGH)) == FinalDecision.ESCALATED

    def test_triggered_auto_approve_still_routes_to_review(self):
        results = ThresholdRouter().evaluate_thresholds(97)

        assert determine_final_decision(results, self._compliance(RiskLevel.LOW)) == FinalDecision.REVIEW_REQUIRED

    def test_escalating_threshold_rejects(self):
        results = ThresholdRouter().evaluate_thresholds(20)

        assert determine_final_decision(results, self._compliance(RiskLevel.LOW)) == FinalDecision.REJECTED


def test_identify_missing_fields_on_complete_product():
    product = ProductContext(
        "Cotton knit t-shirt",
        product_name="Crew tee",
        product_category="Textiles",
        origin_country="BD",
        destination_country="US",
        value=12.5,
        weight=0.2,
        materials=("cotton",),
        intended_use="retail",
    )

    assert identify_missing_fields(product) == []


class TestBatch:
    def test_failures_are_isolated_per_item(self, build_orchestrator):
        def source(request):
            if request.product_name == "bad":
                raise RuntimeError("rate limited")
            return {"hsCode": "9503.00", "confidence": 95}

        orchestrator = build_orchestrator({"openai": source}, validator=ExplodingValidator())
        requests = [
            TEDDY,
            ProductContext("Wooden puzzle", product_name="bad"),
            ProductContext("Board game", destination_country="US"),
            ProductContext("explode"),
        ]

        outcome = orchestrator.classify_batch(requests)

        assert outcome.total == 4
        assert outcome.success_count == 2
        assert [(e.index, e.key) for e in outcome.errors] == [(1, "bad"), (3, "explode")]
        assert outcome.errors[0].message == ALL_SOURCES_FAILED
        assert "validation stage failed" in outcome.errors[1].message

    def test_each_item_gets_its_own_run_id(self, build_orchestrator, answering):
        orchestrator = build_orchestrator({"openai": answering("9503.00", 95)})

        outcome = orchestrator.classify_batch([TEDDY, TEDDY, TEDDY])

        assert outcome.error_count == 0
        assert len({result.run_id for result in outcome.results}) == 3

    def test_items_inside_a_bound_run_get_fresh_ids_with_parent(self, build_orchestrator, answering, caplog):
        orchestrator = build_orchestrator({"openai": answering("9503.00", 95)})

        with caplog.at_level(logging.INFO, logger="tariffgate.observability"):
            with run_scope("job-run"):
                outcome = orchestrator.classify_batch([TEDDY, TEDDY, TEDDY])
                assert current_run_id() == "job-run"

        run_ids = {result.run_id for result in outcome.results}
        assert len(run_ids) == 3
        assert "job-run" not in run_ids
        completed = [
            record.payload for record in caplog.records if record.getMessage() == "classification.completed"
        ]
        assert {payload["run_id"] for payload in completed} == run_ids
        assert {payload["parent_run_id"] for payload in completed} == {"job-run"}
