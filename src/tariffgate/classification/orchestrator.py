"""End-to-end classification pipeline.

One request runs strictly in order: AI source fan-out, HS-code validation,
business rules, compliance matching, confidence assessment and threshold
routing.  Fan-out is sequential with early exit; batches run requests in
small thread-pool windows with a pause between windows.
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from tariffgate.classification.confidence import ConfidenceAssessor
from tariffgate.classification.rules import RuleEngine
from tariffgate.classification.sources import ConfiguredSource, SourceSuggestion, coerce_suggestion
from tariffgate.classification.thresholds import ThresholdRouter
from tariffgate.classification.types import (
    AssessmentContext,
    ClassificationDecision,
    ConfidenceAssessment,
    FeedbackEntry,
    FinalDecision,
    ProductContext,
    Suggestion,
    ThresholdActionType,
    ThresholdResult,
    ValidationContext,
    ValidationReport,
)
from tariffgate.classification.validator import BasicHSCodeValidator, HSCodeValidator
from tariffgate.compliance import ComplianceCheck, ComplianceChecker, ComplianceResult, RiskLevel
from tariffgate.config import Settings, get_settings
from tariffgate.errors import PipelineStageError
from tariffgate.observability import log_event, run_scope

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "XX"
ALL_SOURCES_FAILED = "All classification sources failed"
FAN_OUT_CANCELLED = "Classification cancelled before any source answered"
_REJECTING_ACTIONS = frozenset({ThresholdActionType.REJECT, ThresholdActionType.ESCALATE})


@dataclass
class ClassificationOutcome:
    success: bool
    sources_attempted: List[str]
    fallback_used: bool = False
    hs_code: Optional[str] = None
    description: str = ""
    source: Optional[str] = None
    decision: Optional[ClassificationDecision] = None
    validation: Optional[ValidationReport] = None
    compliance: Optional[ComplianceResult] = None
    assessment: Optional[ConfidenceAssessment] = None
    threshold_results: List[ThresholdResult] = field(default_factory=list)
    final_decision: Optional[FinalDecision] = None
    alternatives: List[SourceSuggestion] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    run_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BatchError:
    index: int
    key: str
    message: str


@dataclass
class BatchOutcome:
    results: List[ClassificationOutcome]
    errors: List[BatchError]
    total: int

    @property
    def success_count(self) -> int:
        return len(self.results)

    @property
    def error_count(self) -> int:
        return len(self.errors)


def identify_missing_fields(request: ProductContext) -> List[str]:
    checks = (
        ("productName", request.product_name),
        ("productCategory", request.product_category),
        ("originCountry", request.origin_country),
        ("destinationCountry", request.destination_country),
        ("value", request.value),
        ("weight", request.weight),
        ("materials", request.materials),
        ("intendedUse", request.intended_use),
    )
    return [name for name, value in checks if not value]


def determine_final_decision(
    threshold_results: Sequence[ThresholdResult], compliance: ComplianceResult
) -> FinalDecision:
    """Compliance risk dominates, then threshold actions, then residual medium risk."""

    if compliance.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        return FinalDecision.ESCALATED
    triggered = [result for result in threshold_results if result.triggered]
    if triggered:
        if any(result.action.type in _REJECTING_ACTIONS for result in triggered):
            return FinalDecision.REJECTED
        return FinalDecision.REVIEW_REQUIRED
    if compliance.risk_level == RiskLevel.MEDIUM:
        return FinalDecision.REVIEW_REQUIRED
    return FinalDecision.APPROVED


def _stage_failed(stage: str, hs_code: str, exc: Exception) -> PipelineStageError:
    log_event("classification.stage_failed", level=logging.WARNING, stage=stage, hs_code=hs_code, error=str(exc))
    return PipelineStageError(stage, exc)


class ClassificationOrchestrator:
    """Sequences sources, validator, rules, compliance, confidence and thresholds."""

    def __init__(
        self,
        sources: Iterable[ConfiguredSource],
        *,
        validator: HSCodeValidator | None = None,
        engine: RuleEngine | None = None,
        checker: ComplianceChecker | None = None,
        assessor: ConfidenceAssessor | None = None,
        router: ThresholdRouter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.sources = list(sources)
        self.validator = validator or BasicHSCodeValidator()
        self.engine = engine or RuleEngine()
        self.checker = checker or ComplianceChecker()
        self.assessor = assessor or ConfidenceAssessor()
        self.router = router or ThresholdRouter()
        self.settings = settings or get_settings()

    def enabled_sources(self) -> List[ConfiguredSource]:
        return sorted(
            (source for source in self.sources if source.config.enabled),
            key=lambda source: source.config.priority,
        )

    # -- fan-out ------------------------------------------------------------

    def fan_out(
        self, request: ProductContext, cancel_event: threading.Event | None = None
    ) -> Tuple[Optional[SourceSuggestion], Optional[str], List[str], bool]:
        """Query sources in priority order; returns (best, source name, attempted, fallback_used)."""

        attempted: List[str] = []
        best: Optional[SourceSuggestion] = None
        best_source: Optional[str] = None
        fallback_used = False
        for configured in self.enabled_sources():
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Fan-out cancelled after %d source(s)", len(attempted))
                break
            attempted.append(configured.name)
            try:
                suggestion = coerce_suggestion(configured.source.classify(request))
            except Exception as exc:
                logger.warning("Classification failed for source %s: %s", configured.name, exc)
                continue
            if suggestion is None:
                logger.info("Source %s returned no suggestion", configured.name)
                continue

            weighted = min(suggestion.confidence * configured.config.confidence_weight, 100.0)
            suggestion = replace(suggestion, confidence=weighted)
            if weighted >= self.settings.early_exit_confidence:
                return suggestion, configured.name, attempted, len(attempted) > 1
            if best is None or weighted > best.confidence:
                best, best_source = suggestion, configured.name
                fallback_used = len(attempted) > 1
        return best, best_source, attempted, fallback_used

    # -- pipeline -----------------------------------------------------------

    def _validate(self, request: ProductContext, suggestion: SourceSuggestion) -> ValidationReport:
        context = ValidationContext(
            hs_code=suggestion.hs_code,
            product_description=request.product_description,
            product_category=request.product_category,
            origin_country=request.origin_country,
            destination_country=request.destination_country,
            confidence=suggestion.confidence,
            existing_classifications=tuple(c.hs_code for c in request.existing_classifications),
        )
        try:
            return self.validator.validate_hs_code(context)
        except Exception as exc:
            raise _stage_failed("validation", suggestion.hs_code, exc) from exc

    def _check_compliance(self, request: ProductContext, hs_code: str) -> ComplianceResult:
        check = ComplianceCheck(
            hs_code=hs_code,
            origin_country=request.origin_country or UNKNOWN_COUNTRY,
            destination_country=request.destination_country or UNKNOWN_COUNTRY,
            product_value=request.value,
            product_weight=request.weight,
            intended_use=request.intended_use,
        )
        try:
            return self.checker.check_compliance(check)
        except Exception as exc:
            raise _stage_failed("compliance", hs_code, exc) from exc

    def classify(
        self, request: ProductContext, cancel_event: threading.Event | None = None
    ) -> ClassificationOutcome:
        with run_scope() as run_id:
            return self._classify(request, cancel_event, run_id)

    def _classify(
        self, request: ProductContext, cancel_event: threading.Event | None, run_id: str
    ) -> ClassificationOutcome:
        started = time.perf_counter()
        best, source_name, attempted, fallback_used = self.fan_out(request, cancel_event)
        if best is None:
            cancelled = cancel_event is not None and cancel_event.is_set()
            error = FAN_OUT_CANCELLED if cancelled and not attempted else ALL_SOURCES_FAILED
            log_event("classification.failed", sources_attempted=attempted, error=error)
            return ClassificationOutcome(
                success=False,
                sources_attempted=attempted,
                processing_time_ms=(time.perf_counter() - started) * 1000.0,
                run_id=run_id,
                error=error,
            )

        missing_fields = identify_missing_fields(request)
        validation = self._validate(request, best)
        decision = self.engine.process(
            request,
            [Suggestion(best.hs_code, best.confidence, best.reasoning)],
            [validation],
        )
        compliance = self._check_compliance(request, decision.hs_code)
        assessment = self.assessor.assess_confidence(
            best.confidence,
            validation.score,
            decision.confidence,
            AssessmentContext(
                product_description=request.product_description,
                category=request.product_category,
                product_value=request.value,
                historical_classifications=request.existing_classifications,
                user_feedback=[FeedbackEntry(rating=entry.accuracy / 20) for entry in request.user_history],
                missing_fields=missing_fields,
            ),
        )
        threshold_results = self.router.evaluate_thresholds(
            assessment.final_score,
            {"category": request.product_category, "productValue": request.value},
        )
        final_decision = determine_final_decision(threshold_results, compliance)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        log_event(
            "classification.completed",
            hs_code=decision.hs_code,
            source=source_name,
            final_decision=final_decision.value,
            final_score=round(assessment.final_score, 2),
            risk_level=compliance.risk_level.value,
            sources_attempted=attempted,
        )
        return ClassificationOutcome(
            success=True,
            sources_attempted=attempted,
            fallback_used=fallback_used,
            hs_code=decision.hs_code,
            description=best.description,
            source=source_name,
            decision=decision,
            validation=validation,
            compliance=compliance,
            assessment=assessment,
            threshold_results=threshold_results,
            final_decision=final_decision,
            alternatives=list(best.alternatives),
            missing_fields=missing_fields,
            processing_time_ms=elapsed_ms,
            run_id=run_id,
        )

    # -- batch --------------------------------------------------------------

    def _classify_item(self, request: ProductContext) -> ClassificationOutcome:
        # Each item gets its own run id; the batch run id is kept as its parent.
        with run_scope(fresh=True):
            return self.classify(request)

    def classify_batch(self, requests: Sequence[ProductContext]) -> BatchOutcome:
        """Classify independent requests; one failing item never aborts the rest."""

        window = max(1, self.settings.batch_concurrency)
        results: List[ClassificationOutcome] = []
        errors: List[BatchError] = []
        with ThreadPoolExecutor(max_workers=window, thread_name_prefix="tgate-batch") as pool:
            for start in range(0, len(requests), window):
                if start and self.settings.batch_pause_seconds > 0:
                    time.sleep(self.settings.batch_pause_seconds)
                chunk = requests[start : start + window]
                futures = [
                    (start + offset, request, pool.submit(contextvars.copy_context().run, self._classify_item, request))
                    for offset, request in enumerate(chunk)
                ]
                for index, request, future in futures:
                    try:
                        outcome = future.result()
                    except Exception as exc:
                        logger.warning("Batch item %d (%s) failed: %s", index, request.key, exc)
                        errors.append(BatchError(index, request.key, str(exc)))
                        continue
                    if outcome.success:
                        results.append(outcome)
                    else:
                        errors.append(BatchError(index, request.key, outcome.error or ALL_SOURCES_FAILED))
        log_event("classification.batch", total=len(requests), succeeded=len(results), failed=len(errors))
        return BatchOutcome(results=results, errors=errors, total=len(requests))
