"""Confidence threshold routing.

Thresholds are prioritised score bands mapped to a routing action.  The
router collects every matching band in priority order and stops at the
first blocking one (reject, escalate or require-review), so a score never
yields more than one blocking result.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from tariffgate.classification.types import (
    ConfidenceThreshold,
    NotificationLevel,
    ThresholdAction,
    ThresholdActionType,
    ThresholdCondition,
    ThresholdOperator,
    ThresholdResult,
)
from tariffgate.registry import VersionedRegistry, by_priority

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION_HOURS = {
    ThresholdActionType.AUTO_APPROVE: 0.0,
    ThresholdActionType.REQUIRE_REVIEW: 24.0,
    ThresholdActionType.REQUEST_INFO: 48.0,
    ThresholdActionType.ESCALATE: 72.0,
    ThresholdActionType.FLAG_WARNING: 4.0,
    ThresholdActionType.REJECT: 24.0,
}
FALLBACK_RESOLUTION_HOURS = 24.0


def default_thresholds() -> List[ConfidenceThreshold]:
    return [
        ConfidenceThreshold(
            id="auto-approve-high",
            name="Auto-Approve High Confidence",
            description="Automatically approve classifications with very high confidence",
            min_confidence=95,
            max_confidence=100,
            action=ThresholdAction(
                ThresholdActionType.AUTO_APPROVE,
                "Classification automatically approved due to high confidence",
                NotificationLevel.LOW,
            ),
            priority=1,
        ),
        ConfidenceThreshold(
            id="review-medium",
            name="Review Medium Confidence",
            description="Require human review for medium confidence classifications",
            min_confidence=70,
            max_confidence=94,
            action=ThresholdAction(
                ThresholdActionType.REQUIRE_REVIEW,
                "Classification requires human review due to medium confidence",
                NotificationLevel.MEDIUM,
                deadline=24,
            ),
            priority=2,
        ),
        ConfidenceThreshold(
            id="flag-low",
            name="Flag Low Confidence",
            description="Flag classifications with low confidence for additional information",
            min_confidence=50,
            max_confidence=69,
            action=ThresholdAction(
                ThresholdActionType.REQUEST_INFO,
                "Additional product information needed to improve classification confidence",
                NotificationLevel.MEDIUM,
                parameters={"requiredFields": ["productDescription", "intendedUse", "materials"]},
            ),
            priority=3,
        ),
        ConfidenceThreshold(
            id="escalate-very-low",
            name="Escalate Very Low Confidence",
            description="Escalate classifications with very low confidence to experts",
            min_confidence=0,
            max_confidence=49,
            action=ThresholdAction(
                ThresholdActionType.ESCALATE,
                "Classification escalated to expert due to very low confidence",
                NotificationLevel.HIGH,
                assign_to="expert-team",
                deadline=48,
            ),
            priority=4,
        ),
        ConfidenceThreshold(
            id="electronics-strict",
            name="Electronics Strict Review",
            description="Stricter thresholds for electronics due to complexity",
            category="Electronics",
            min_confidence=80,
            max_confidence=100,
            action=ThresholdAction(
                ThresholdActionType.REQUIRE_REVIEW,
                "Electronics classification requires expert review",
                NotificationLevel.MEDIUM,
                assign_to="electronics-specialist",
            ),
            conditions=(ThresholdCondition("category", ThresholdOperator.EQUALS, "Electronics"),),
            priority=1,
        ),
        ConfidenceThreshold(
            id="high-value-review",
            name="High Value Product Review",
            description="Additional review for high-value products regardless of confidence",
            min_confidence=0,
            max_confidence=100,
            action=ThresholdAction(
                ThresholdActionType.REQUIRE_REVIEW,
                "High-value product requires additional verification",
                NotificationLevel.MEDIUM,
            ),
            conditions=(ThresholdCondition("productValue", ThresholdOperator.GREATER, 10000),),
            priority=2,
        ),
    ]


def validate_threshold(threshold: ConfidenceThreshold) -> None:
    if threshold.min_confidence > threshold.max_confidence:
        raise ValueError(
            f"Threshold {threshold.id!r}: min_confidence {threshold.min_confidence} "
            f"exceeds max_confidence {threshold.max_confidence}"
        )


class ThresholdRegistry(VersionedRegistry[ConfidenceThreshold]):
    id_prefix = "threshold"

    def __init__(self, thresholds: Optional[Iterable[ConfidenceThreshold]] = None) -> None:
        super().__init__(
            default_thresholds() if thresholds is None else thresholds, validate=validate_threshold
        )


def _number(value: Any) -> float:
    if value is None or isinstance(value, (list, tuple, dict)):
        raise ValueError(f"not a number: {value!r}")
    return float(value)


def _condition_holds(condition: ThresholdCondition, context: Mapping[str, Any]) -> bool:
    value = context.get(condition.field)
    operator = condition.operator
    if operator == ThresholdOperator.EQUALS:
        return value == condition.value
    if operator == ThresholdOperator.GREATER:
        return _number(value) > _number(condition.value)
    if operator == ThresholdOperator.LESS:
        return _number(value) < _number(condition.value)
    if operator == ThresholdOperator.CONTAINS:
        return str(condition.value) in str(value)
    if operator == ThresholdOperator.IN:
        return isinstance(condition.value, (list, tuple)) and value in condition.value
    if operator == ThresholdOperator.RANGE:
        bounds = condition.value if isinstance(condition.value, Mapping) else {}
        number = _number(value)
        low, high = bounds.get("min"), bounds.get("max")
        return (low is None or number >= _number(low)) and (high is None or number <= _number(high))
    return False


def conditions_hold(conditions: Iterable[ThresholdCondition], context: Mapping[str, Any]) -> bool:
    for condition in conditions:
        try:
            if not _condition_holds(condition, context):
                return False
        except (TypeError, ValueError, OverflowError):
            return False
    return True


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def build_reasoning(threshold: ConfidenceThreshold, confidence: float) -> str:
    reasoning = (
        f"Confidence score of {confidence:.1f}% falls within the {threshold.name} threshold "
        f"({threshold.min_confidence:g}-{threshold.max_confidence:g}%)."
    )
    if threshold.conditions:
        described = ", ".join(
            f"{c.field} {c.operator.value} {_format_value(c.value)}" for c in threshold.conditions
        )
        reasoning += f" Additional conditions were met: {described}."
    if threshold.category:
        reasoning += f" Category-specific threshold applied for {threshold.category}."
    return reasoning


def next_steps(action: ThresholdAction) -> List[str]:
    kind = action.type
    if kind == ThresholdActionType.AUTO_APPROVE:
        return ["Classification has been automatically approved", "No further action required"]
    if kind == ThresholdActionType.REQUIRE_REVIEW:
        steps = ["Submit classification for human review"]
        if action.assign_to:
            steps.append(f"Assign to: {action.assign_to}")
        if action.deadline:
            steps.append(f"Review deadline: {action.deadline:g} hours")
        return steps
    if kind == ThresholdActionType.REQUEST_INFO:
        steps = ["Request additional product information"]
        required = action.parameters.get("requiredFields")
        if required:
            steps.append(f"Required fields: {', '.join(required)}")
        return steps
    if kind == ThresholdActionType.ESCALATE:
        steps = ["Escalate to expert team", "Provide detailed product documentation"]
        if action.deadline:
            steps.append(f"Expert review deadline: {action.deadline:g} hours")
        return steps
    if kind == ThresholdActionType.FLAG_WARNING:
        return ["Classification flagged with warning", "Proceed with caution"]
    return ["Classification rejected", "Review and resubmit with additional information"]


def estimate_resolution_hours(action: ThresholdAction) -> float:
    if action.deadline:
        return float(action.deadline)
    return DEFAULT_RESOLUTION_HOURS.get(action.type, FALLBACK_RESOLUTION_HOURS)


class ThresholdRouter:
    """Routes a final confidence score to threshold actions."""

    def __init__(self, registry: ThresholdRegistry | None = None) -> None:
        self.registry = registry if registry is not None else ThresholdRegistry()

    def add_threshold(self, threshold: ConfidenceThreshold) -> str:
        return self.registry.add(threshold)

    def update_threshold(self, threshold_id: str, **changes: Any) -> bool:
        return self.registry.update(threshold_id, **changes)

    def delete_threshold(self, threshold_id: str) -> bool:
        return self.registry.delete(threshold_id)

    def get_thresholds(self, category: Optional[str] = None) -> List[ConfidenceThreshold]:
        thresholds = self.registry.list()
        if category:
            return [t for t in thresholds if not t.category or t.category == category]
        return thresholds

    def coverage_gaps(self, category: Optional[str] = None) -> List[Tuple[float, float]]:
        """Score intervals in [0, 100] that no enabled, unconditional band covers.

        Gaps are reported as (low, high) pairs; a score strictly between them
        produces no threshold result, so the final decision falls back to the
        compliance risk alone.
        """

        bands = sorted(
            (t.min_confidence, t.max_confidence)
            for t in self.registry.list()
            if t.enabled and not t.conditions and (not t.category or t.category == category)
        )
        if not bands:
            return [(0.0, 100.0)]
        gaps: List[Tuple[float, float]] = []
        if bands[0][0] > 0:
            gaps.append((0.0, float(bands[0][0])))
        reach = bands[0][1]
        for low, high in bands[1:]:
            if low > reach:
                gaps.append((float(reach), float(low)))
            reach = max(reach, high)
        if reach < 100:
            gaps.append((float(reach), 100.0))
        return gaps

    def evaluate_thresholds(
        self, final_score: float, context: Mapping[str, Any] | None = None
    ) -> List[ThresholdResult]:
        context = context or {}
        results: List[ThresholdResult] = []
        with self.registry.reading() as (_, thresholds):
            for threshold in by_priority(thresholds):
                if not threshold.contains(final_score):
                    continue
                if threshold.conditions and not conditions_hold(threshold.conditions, context):
                    continue
                if threshold.category and threshold.category != context.get("category"):
                    continue
                results.append(
                    ThresholdResult(
                        threshold=threshold,
                        triggered=True,
                        confidence=final_score,
                        action=threshold.action,
                        reasoning=build_reasoning(threshold, final_score),
                        next_steps=tuple(next_steps(threshold.action)),
                        estimated_resolution_time=estimate_resolution_hours(threshold.action),
                    )
                )
                if threshold.action.type.blocking:
                    break
        logger.debug(
            "Score %.1f matched thresholds %s", final_score, [result.threshold.id for result in results]
        )
        return results
