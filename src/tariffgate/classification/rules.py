"""Deterministic business-rule engine for HS classification.

Rules are condition/action pairs held in a :class:`RuleRegistry`.  Every
enabled rule whose conditions all hold is applied, in ascending priority;
there is no early exit.  Condition evaluation never raises: a malformed
regex, a non-numeric range operand or an unknown field simply fails the
condition.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from tariffgate.classification.types import (
    ClassificationDecision,
    ClassificationFlag,
    ClassificationRule,
    ConditionOperator,
    DecisionSource,
    FlagType,
    ProductContext,
    RuleAction,
    RuleActionType,
    RuleCondition,
    RuleEvaluation,
    Severity,
    Suggestion,
    ValidationReport,
)
from tariffgate.patterns import require_pattern, safe_search
from tariffgate.registry import VersionedRegistry, by_priority

logger = logging.getLogger(__name__)

REVIEW_SCORE_FLOOR = 70.0
AUTO_APPROVE_SCORE = 95.0
LOW_CONFIDENCE_FLAG = 80.0
VERY_LOW_CONFIDENCE_FLAG = 60.0
ERROR_PENALTY = 15.0
WARNING_PENALTY = 5.0

MANUAL_REVIEW_RECOMMENDATION = "Manual review recommended"
BLOCKED_RECOMMENDATION = "Classification blocked - resolve issues before proceeding"
LOW_CONFIDENCE_RECOMMENDATION = "Consider providing more detailed product information"

# Condition field names as authored in rule payloads -> ProductContext attribute.
CONTEXT_FIELDS: Dict[str, str] = {
    "productDescription": "product_description",
    "productName": "product_name",
    "productCategory": "product_category",
    "originCountry": "origin_country",
    "destinationCountry": "destination_country",
    "value": "value",
    "weight": "weight",
    "materials": "materials",
    "manufacturer": "manufacturer",
    "brandName": "brand_name",
    "model": "model",
    "intendedUse": "intended_use",
    "existingClassifications": "existing_classifications",
}
_SNAKE_FIELDS = frozenset(CONTEXT_FIELDS.values())


def _rule(
    rule_id: str,
    name: str,
    description: str,
    conditions: Sequence[RuleCondition],
    action: RuleAction,
    priority: int,
    category: Optional[str] = None,
) -> ClassificationRule:
    return ClassificationRule(
        id=rule_id,
        name=name,
        description=description,
        conditions=tuple(conditions),
        actions=(action,),
        priority=priority,
        category=category,
    )


def default_rules() -> List[ClassificationRule]:
    """Seed rules installed on every new registry."""

    return [
        _rule(
            "electronics-voltage-check",
            "Electronics Voltage Specification",
            "Require voltage specification for electronic products",
            [
                RuleCondition("productCategory", ConditionOperator.EQUALS, "Electronics"),
                RuleCondition(
                    "productDescription",
                    ConditionOperator.REGEX,
                    r"\b(electronic|electrical|device|gadget)\b",
                ),
            ],
            RuleAction(
                RuleActionType.REQUIRE,
                "Voltage specification is required for electronic products",
                Severity.MEDIUM,
                target="voltage",
            ),
            priority=1,
            category="Electronics",
        ),
        _rule(
            "textile-fiber-content",
            "Textile Fiber Content Requirement",
            "Require fiber content for textile products",
            [
                RuleCondition("productCategory", ConditionOperator.EQUALS, "Textiles"),
                RuleCondition(
                    "productDescription",
                    ConditionOperator.REGEX,
                    r"\b(fabric|textile|clothing|apparel|cotton|wool|silk|polyester)\b",
                ),
            ],
            RuleAction(
                RuleActionType.REQUIRE,
                "Fiber content percentage is required for textile classification",
                Severity.HIGH,
                target="fiberContent",
            ),
            priority=1,
            category="Textiles",
        ),
        _rule(
            "food-preservation-method",
            "Food Preservation Method",
            "Identify preservation method for food products",
            [
                RuleCondition("productCategory", ConditionOperator.IN, ["Food", "Beverages"]),
                RuleCondition(
                    "productDescription",
                    ConditionOperator.REGEX,
                    r"\b(food|beverage|edible|consumable)\b",
                ),
            ],
            RuleAction(
                RuleActionType.SUGGEST,
                "Consider preservation method (fresh, frozen, dried, canned) for accurate classification",
                Severity.MEDIUM,
            ),
            priority=2,
            category="Food",
        ),
        _rule(
            "machinery-function-check",
            "Machinery Function Specification",
            "Require function specification for machinery",
            [
                RuleCondition("productCategory", ConditionOperator.EQUALS, "Machinery"),
                RuleCondition(
                    "productDescription",
                    ConditionOperator.REGEX,
                    r"\b(machine|equipment|apparatus|tool)\b",
                ),
            ],
            RuleAction(
                RuleActionType.REQUIRE,
                "Primary function and operation method must be specified for machinery",
                Severity.HIGH,
                target="function",
            ),
            priority=1,
            category="Machinery",
        ),
        _rule(
            "high-value-review",
            "High Value Product Review",
            "Flag high-value products for manual review",
            [RuleCondition("value", ConditionOperator.RANGE, {"min": 10000, "max": float("inf")})],
            RuleAction(
                RuleActionType.FLAG_REVIEW,
                "High-value product requires additional review for duty optimization",
                Severity.MEDIUM,
            ),
            priority=3,
        ),
        _rule(
            "consistency-check",
            "Classification Consistency Check",
            "Check consistency with previous classifications",
            [RuleCondition("existingClassifications", ConditionOperator.NOT_IN, [])],
            RuleAction(
                RuleActionType.WARN,
                "Classification differs from previous similar products",
                Severity.LOW,
            ),
            priority=4,
        ),
    ]


def validate_rule(rule: ClassificationRule) -> None:
    """Reject rules whose regex conditions cannot be compiled."""

    for condition in rule.conditions:
        if condition.operator == ConditionOperator.REGEX:
            require_pattern(condition.value, ignore_case=not condition.case_sensitive)


class RuleRegistry(VersionedRegistry[ClassificationRule]):
    id_prefix = "rule"

    def __init__(self, rules: Optional[Iterable[ClassificationRule]] = None) -> None:
        super().__init__(default_rules() if rules is None else rules, validate=validate_rule)


def field_value(field: str, context: ProductContext) -> Any:
    """Resolve a condition field against the context; empty collections read as absent."""

    attribute = CONTEXT_FIELDS.get(field, field if field in _SNAKE_FIELDS else None)
    if attribute is None:
        return None
    value = getattr(context, attribute, None)
    if isinstance(value, (tuple, list)) and not value:
        return None
    return value


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _in_range(value: Any, bounds: Any) -> bool:
    if not isinstance(bounds, Mapping):
        return False
    number = _as_float(value)
    if number is None or number != number:
        return False
    low = _as_float(bounds.get("min"))
    high = _as_float(bounds.get("max"))
    if bounds.get("min") is not None and low is None:
        return False
    if bounds.get("max") is not None and high is None:
        return False
    return (low is None or number >= low) and (high is None or number <= high)


def _text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(_text(item) for item in value)
    return str(value)


def _fold(value: Any, case_sensitive: bool) -> str:
    text = _text(value)
    return text if case_sensitive else text.casefold()


def evaluate_condition(condition: RuleCondition, value: Any) -> bool:
    operator = condition.operator
    expected = condition.value
    if value is None:
        # Absent fields only satisfy notIn, or in against an empty list.
        if operator == ConditionOperator.NOT_IN:
            return True
        return operator == ConditionOperator.IN and isinstance(expected, (list, tuple)) and not expected

    sensitive = condition.case_sensitive
    if operator == ConditionOperator.EQUALS:
        if sensitive:
            return value == expected
        return _fold(value, False) == _fold(expected, False)
    if operator == ConditionOperator.CONTAINS:
        return _fold(expected, sensitive) in _fold(value, sensitive)
    if operator == ConditionOperator.STARTS_WITH:
        return _fold(value, sensitive).startswith(_fold(expected, sensitive))
    if operator == ConditionOperator.ENDS_WITH:
        return _fold(value, sensitive).endswith(_fold(expected, sensitive))
    if operator == ConditionOperator.REGEX:
        return safe_search(expected, _text(value), ignore_case=not sensitive)
    if operator == ConditionOperator.RANGE:
        return _in_range(value, expected)
    if operator == ConditionOperator.IN:
        return isinstance(expected, (list, tuple)) and value in expected
    if operator == ConditionOperator.NOT_IN:
        return not isinstance(expected, (list, tuple)) or value not in expected
    return False


def conditions_hold(conditions: Iterable[RuleCondition], context: ProductContext) -> bool:
    for condition in conditions:
        try:
            matched = evaluate_condition(condition, field_value(condition.field, context))
        except Exception:  # pragma: no cover - broken conditions degrade to non-match
            logger.debug("Condition %s %s failed to evaluate", condition.field, condition.operator, exc_info=True)
            matched = False
        if not matched:
            return False
    return True


def apply_action(action: RuleAction, rule_id: str, evaluation: RuleEvaluation) -> None:
    kind = action.type
    if kind == RuleActionType.REQUIRE:
        evaluation.requirements.append(action.message)
    elif kind == RuleActionType.SUGGEST:
        evaluation.suggestions.append(action.message)
    elif kind == RuleActionType.AUTO_CLASSIFY:
        if action.target:
            evaluation.suggestions.append(f"Auto-classify as {action.target}: {action.message}")
        else:
            evaluation.suggestions.append(action.message)
    elif kind == RuleActionType.WARN:
        evaluation.flags.append(
            ClassificationFlag(FlagType.MANUAL, action.severity, action.message, rule_id=rule_id)
        )
    elif kind == RuleActionType.FLAG_REVIEW:
        evaluation.flags.append(
            ClassificationFlag(
                FlagType.MANUAL,
                action.severity,
                action.message,
                rule_id=rule_id,
                recommendation=MANUAL_REVIEW_RECOMMENDATION,
            )
        )
    elif kind == RuleActionType.BLOCK:
        evaluation.flags.append(
            ClassificationFlag(
                FlagType.COMPLIANCE,
                Severity.HIGH,
                action.message,
                rule_id=rule_id,
                recommendation=BLOCKED_RECOMMENDATION,
            )
        )


@dataclass
class _ScoredSuggestion:
    suggestion: Suggestion
    validation: ValidationReport
    score: float


def score_suggestion(suggestion: Suggestion, validation: ValidationReport) -> float:
    score = suggestion.confidence * (validation.score / 100.0)
    score -= ERROR_PENALTY * len(validation.errors)
    score -= WARNING_PENALTY * len(validation.warnings)
    return max(0.0, score)


class RuleEngine:
    """Evaluates registry rules and fuses them with scored AI suggestions."""

    def __init__(self, registry: RuleRegistry | None = None) -> None:
        self.registry = registry if registry is not None else RuleRegistry()

    # -- admin mutation API -------------------------------------------------

    def add_rule(self, rule: ClassificationRule) -> str:
        return self.registry.add(rule)

    def update_rule(self, rule_id: str, **changes: Any) -> bool:
        return self.registry.update(rule_id, **changes)

    def delete_rule(self, rule_id: str) -> bool:
        return self.registry.delete(rule_id)

    def get_rules(self) -> List[ClassificationRule]:
        return self.registry.list()

    # -- evaluation ---------------------------------------------------------

    def evaluate(self, context: ProductContext) -> RuleEvaluation:
        evaluation = RuleEvaluation()
        with self.registry.reading() as (version, rules):
            for rule in by_priority(rules):
                if not conditions_hold(rule.conditions, context):
                    continue
                evaluation.applied_rules.append(rule.id)
                for action in rule.actions:
                    apply_action(action, rule.id, evaluation)
        logger.debug(
            "Rules v%d applied %d rule(s): %s", version, len(evaluation.applied_rules), evaluation.applied_rules
        )
        return evaluation

    def test_rule(
        self, rule_id: str, context: ProductContext
    ) -> Tuple[bool, List[RuleAction], float]:
        """Dry-run one rule; returns (matches, actions that would run, elapsed ms)."""

        rule = self.registry.get(rule_id)
        if rule is None:
            raise KeyError(rule_id)
        started = time.perf_counter()
        matches = conditions_hold(rule.conditions, context)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return matches, list(rule.actions) if matches else [], elapsed_ms

    def process(
        self,
        context: ProductContext,
        suggestions: Sequence[Suggestion],
        validations: Sequence[ValidationReport],
    ) -> ClassificationDecision:
        """Pick the best validated suggestion and build an auditable decision."""

        if not suggestions:
            raise ValueError("at least one suggestion is required")
        if len(suggestions) != len(validations):
            raise ValueError("each suggestion needs exactly one validation report")

        evaluation = self.evaluate(context)
        scored = [
            _ScoredSuggestion(suggestion, validation, score_suggestion(suggestion, validation))
            for suggestion, validation in zip(suggestions, validations)
        ]
        best = scored[0]
        for candidate in scored[1:]:
            if candidate.score > best.score:
                best = candidate

        requires_review = (
            best.score < REVIEW_SCORE_FLOOR
            or any(flag.severity == Severity.HIGH for flag in evaluation.flags)
            or bool(evaluation.requirements)
        )
        auto_approved = best.score >= AUTO_APPROVE_SCORE and not best.validation.errors and not requires_review

        flags = list(evaluation.flags)
        flags.extend(
            ClassificationFlag(FlagType.ACCURACY, Severity.HIGH, issue.message, rule_id=issue.rule_id)
            for issue in best.validation.errors
        )
        flags.extend(
            ClassificationFlag(
                FlagType.ACCURACY,
                Severity.MEDIUM,
                issue.message,
                rule_id=issue.rule_id,
                recommendation=issue.suggestion,
            )
            for issue in best.validation.warnings
        )
        confidence = best.suggestion.confidence
        if confidence < LOW_CONFIDENCE_FLAG:
            flags.append(
                ClassificationFlag(
                    FlagType.CONFIDENCE,
                    Severity.HIGH if confidence < VERY_LOW_CONFIDENCE_FLAG else Severity.MEDIUM,
                    f"Classification confidence is {confidence:g}%",
                    recommendation=LOW_CONFIDENCE_RECOMMENDATION,
                )
            )

        return ClassificationDecision(
            hs_code=best.suggestion.hs_code,
            confidence=best.score,
            reasoning=build_reasoning(best, evaluation),
            source=DecisionSource.HYBRID if evaluation.applied_rules else DecisionSource.AI,
            applied_rules=list(evaluation.applied_rules),
            requires_review=requires_review,
            auto_approved=auto_approved,
            flags=flags,
        )


def build_reasoning(best: _ScoredSuggestion, evaluation: RuleEvaluation) -> str:
    parts = [best.suggestion.reasoning]
    if evaluation.applied_rules:
        parts.append(f"\n\nBusiness rules applied: {', '.join(evaluation.applied_rules)}")
    if evaluation.suggestions:
        parts.append(f"\n\nSuggestions: {'; '.join(evaluation.suggestions)}")
    parts.append(f"\n\nValidation score: {best.validation.score:g}/100")
    parts.append(f"\nFinal confidence: {best.score:.1f}%")
    return "".join(parts)
