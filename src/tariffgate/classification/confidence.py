"""Confidence fusion and calibration.

The assessor blends five component signals into a weighted base score,
adjusts it by qualitative factors detected in the request context and by
any manual adjustments, and bands the result into a reliability tier.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from tariffgate.classification.types import (
    AssessmentContext,
    ComponentConfidences,
    ConfidenceAdjustment,
    ConfidenceAssessment,
    ConfidenceFactor,
    FactorSource,
    FeedbackEntry,
    PriorClassification,
    Reliability,
)

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0
HISTORY_WINDOW = 5

COMPONENT_WEIGHTS: Dict[str, float] = {
    "ai_model": 0.4,
    "validation": 0.2,
    "business_rules": 0.2,
    "historical_consistency": 0.1,
    "user_feedback": 0.1,
}


@dataclass(frozen=True)
class FactorSpec:
    impact: float
    weight: float
    description: str


FACTORS: Dict[str, FactorSpec] = {
    "CLEAR_PRODUCT_DESCRIPTION": FactorSpec(15, 0.2, "Product description is clear and detailed"),
    "AMBIGUOUS_DESCRIPTION": FactorSpec(-20, 0.2, "Product description is ambiguous or unclear"),
    "HIGH_AI_CONFIDENCE": FactorSpec(25, 0.3, "AI model shows high confidence"),
    "LOW_AI_CONFIDENCE": FactorSpec(-30, 0.3, "AI model shows low confidence"),
    "VALIDATION_PASSED": FactorSpec(10, 0.1, "All validation rules passed"),
    "VALIDATION_FAILED": FactorSpec(-15, 0.15, "Validation rules failed"),
    "CONSISTENT_HISTORY": FactorSpec(20, 0.15, "Consistent with previous classifications"),
    "INCONSISTENT_HISTORY": FactorSpec(-25, 0.15, "Inconsistent with previous classifications"),
    "MISSING_INFORMATION": FactorSpec(-20, 0.2, "Missing critical product information"),
}
# Factor impacts never leave this band, however many fields are missing.
MAX_FACTOR_IMPACT = 30.0

AdjustmentProvider = Callable[[AssessmentContext], Sequence[ConfidenceAdjustment]]


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    # NaN compares false both ways, so min/max would hand back a bound.
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def _factor(name: str, source: FactorSource, impact: Optional[float] = None) -> ConfidenceFactor:
    spec = FACTORS[name]
    return ConfidenceFactor(
        name=name,
        impact=spec.impact if impact is None else impact,
        weight=spec.weight,
        description=spec.description,
        source=source,
    )


def historical_consistency(history: Sequence[PriorClassification]) -> float:
    """Chapter agreement over the most recent prior classifications, scaled by their confidence."""

    recent = list(history)[-HISTORY_WINDOW:]
    if not recent:
        return NEUTRAL_SCORE
    chapters = {entry.hs_code[:2] for entry in recent}
    ratio = 1 - (len(chapters) - 1) / len(recent)
    average_confidence = sum(entry.confidence for entry in recent) / len(recent)
    return min(100.0, ratio * average_confidence)


def user_feedback_score(feedback: Sequence[FeedbackEntry]) -> float:
    if not feedback:
        return NEUTRAL_SCORE
    average = sum(entry.rating for entry in feedback) / len(feedback)
    return average / 5 * 100


def identify_factors(context: AssessmentContext, components: ComponentConfidences) -> List[ConfidenceFactor]:
    factors: List[ConfidenceFactor] = []

    description = context.product_description
    if description:
        length = len(description)
        words = len(description.split())
        if length > 100 and words > 15:
            factors.append(_factor("CLEAR_PRODUCT_DESCRIPTION", FactorSource.USER))
        elif length < 50 or words < 8:
            factors.append(_factor("AMBIGUOUS_DESCRIPTION", FactorSource.USER))

    if components.ai_model >= 90:
        factors.append(_factor("HIGH_AI_CONFIDENCE", FactorSource.AI))
    elif components.ai_model < 60:
        factors.append(_factor("LOW_AI_CONFIDENCE", FactorSource.AI))

    if components.validation >= 90:
        factors.append(_factor("VALIDATION_PASSED", FactorSource.VALIDATION))
    elif components.validation < 70:
        factors.append(_factor("VALIDATION_FAILED", FactorSource.VALIDATION))

    if components.historical_consistency >= 80:
        factors.append(_factor("CONSISTENT_HISTORY", FactorSource.HISTORY))
    elif components.historical_consistency < 40:
        factors.append(_factor("INCONSISTENT_HISTORY", FactorSource.HISTORY))

    if context.missing_fields:
        impact = FACTORS["MISSING_INFORMATION"].impact * len(context.missing_fields)
        factors.append(
            _factor(
                "MISSING_INFORMATION",
                FactorSource.USER,
                impact=clamp(impact, -MAX_FACTOR_IMPACT, MAX_FACTOR_IMPACT),
            )
        )
    return factors


def weighted_base(components: ComponentConfidences) -> float:
    values = components.as_dict()
    return sum(values[name] * weight for name, weight in COMPONENT_WEIGHTS.items())


def determine_reliability(final_score: float, factors: Sequence[ConfidenceFactor]) -> Reliability:
    negative = sum(1 for factor in factors if factor.impact < 0)
    if final_score >= 95 and negative == 0:
        return Reliability.VERY_HIGH
    if final_score >= 85 and negative <= 1:
        return Reliability.HIGH
    if final_score >= 70 and negative <= 2:
        return Reliability.MEDIUM
    if final_score >= 50:
        return Reliability.LOW
    return Reliability.VERY_LOW


@dataclass
class CalibrationSample:
    predicted_confidence: float
    actual_accuracy: float

    @property
    def error(self) -> float:
        return abs(self.predicted_confidence - self.actual_accuracy)


@dataclass(frozen=True)
class CalibrationMetrics:
    average_calibration_error: float
    reliability: float
    sample_size: int


class ConfidenceAssessor:
    """Fuses component signals into a calibrated final score."""

    def __init__(self, adjustments: AdjustmentProvider | None = None) -> None:
        self._adjustments = adjustments
        self._calibration: Dict[str, List[CalibrationSample]] = {}
        self._calibration_lock = threading.Lock()

    def manual_adjustments(self, context: AssessmentContext) -> List[ConfidenceAdjustment]:
        adjustments = list(context.adjustments)
        if self._adjustments is not None:
            adjustments.extend(self._adjustments(context))
        return adjustments

    def assess_confidence(
        self,
        ai_confidence: float,
        validation_score: float,
        business_rule_score: float,
        context: AssessmentContext | None = None,
    ) -> ConfidenceAssessment:
        context = context or AssessmentContext()
        components = ComponentConfidences(
            ai_model=clamp(ai_confidence),
            validation=clamp(validation_score),
            business_rules=clamp(business_rule_score),
            historical_consistency=historical_consistency(context.historical_classifications),
            user_feedback=user_feedback_score(context.user_feedback),
        )
        factors = identify_factors(context, components)
        base = weighted_base(components)
        factor_adjustment = sum(factor.impact * factor.weight for factor in factors)
        adjustments = self.manual_adjustments(context)
        manual = sum(adjustment.adjustment for adjustment in adjustments)
        final_score = clamp(base + factor_adjustment + manual)
        reliability = determine_reliability(final_score, factors)
        logger.debug(
            "Confidence base=%.2f factors=%+.2f manual=%+.2f final=%.2f (%s)",
            base,
            factor_adjustment,
            manual,
            final_score,
            reliability.value,
        )
        return ConfidenceAssessment(
            overall_confidence=base,
            components=components,
            factors=factors,
            adjustments=adjustments,
            final_score=final_score,
            reliability=reliability,
        )

    # -- calibration --------------------------------------------------------

    def update_calibration(
        self, predicted_confidence: float, actual_accuracy: float, category: Optional[str] = None
    ) -> None:
        key = category or "general"
        with self._calibration_lock:
            self._calibration.setdefault(key, []).append(
                CalibrationSample(predicted_confidence, actual_accuracy)
            )

    def get_calibration_metrics(self, category: Optional[str] = None) -> CalibrationMetrics:
        key = category or "general"
        with self._calibration_lock:
            samples = list(self._calibration.get(key, ()))
        if not samples:
            return CalibrationMetrics(average_calibration_error=0.0, reliability=0.0, sample_size=0)
        average_error = sum(sample.error for sample in samples) / len(samples)
        return CalibrationMetrics(
            average_calibration_error=average_error,
            reliability=max(0.0, 100.0 - average_error),
            sample_size=len(samples),
        )
