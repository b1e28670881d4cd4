"""Classification decision data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"
    RANGE = "range"
    IN = "in"
    NOT_IN = "notIn"


class RuleActionType(str, Enum):
    SUGGEST = "suggest"
    REQUIRE = "require"
    WARN = "warn"
    BLOCK = "block"
    AUTO_CLASSIFY = "auto-classify"
    FLAG_REVIEW = "flag-review"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FlagType(str, Enum):
    ACCURACY = "accuracy"
    COMPLIANCE = "compliance"
    CONSISTENCY = "consistency"
    CONFIDENCE = "confidence"
    MANUAL = "manual"


class DecisionSource(str, Enum):
    AI = "ai"
    RULES = "rules"
    HYBRID = "hybrid"


class ThresholdActionType(str, Enum):
    AUTO_APPROVE = "auto-approve"
    REQUIRE_REVIEW = "require-review"
    FLAG_WARNING = "flag-warning"
    REQUEST_INFO = "request-info"
    ESCALATE = "escalate"
    REJECT = "reject"

    @property
    def blocking(self) -> bool:
        return self in _BLOCKING_ACTIONS


_BLOCKING_ACTIONS = frozenset(
    {ThresholdActionType.REJECT, ThresholdActionType.ESCALATE, ThresholdActionType.REQUIRE_REVIEW}
)


class NotificationLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ThresholdOperator(str, Enum):
    EQUALS = "equals"
    GREATER = "greater"
    LESS = "less"
    CONTAINS = "contains"
    IN = "in"
    RANGE = "range"


class Reliability(str, Enum):
    VERY_LOW = "very-low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very-high"


class FactorSource(str, Enum):
    AI = "ai"
    VALIDATION = "validation"
    RULES = "rules"
    HISTORY = "history"
    USER = "user"


class FinalDecision(str, Enum):
    APPROVED = "approved"
    REVIEW_REQUIRED = "review-required"
    REJECTED = "rejected"
    ESCALATED = "escalated"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleCondition:
    field: str
    operator: ConditionOperator
    value: Any = None
    case_sensitive: bool = False


@dataclass(frozen=True)
class RuleAction:
    type: RuleActionType
    message: str
    severity: Severity = Severity.MEDIUM
    target: Optional[str] = None


@dataclass(frozen=True)
class ClassificationRule:
    id: str
    name: str
    conditions: Tuple[RuleCondition, ...] = ()
    actions: Tuple[RuleAction, ...] = ()
    priority: int = 10
    enabled: bool = True
    description: str = ""
    category: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ClassificationFlag:
    type: FlagType
    severity: Severity
    message: str
    rule_id: Optional[str] = None
    recommendation: Optional[str] = None


@dataclass(frozen=True)
class PriorClassification:
    hs_code: str
    confidence: float
    date: Optional[datetime] = None
    source: str = ""


@dataclass(frozen=True)
class UserHistoryEntry:
    product_type: str
    hs_code: str
    accuracy: float


@dataclass(frozen=True)
class ProductContext:
    """Everything known about the product being classified."""

    product_description: str
    product_name: Optional[str] = None
    product_category: Optional[str] = None
    origin_country: Optional[str] = None
    destination_country: Optional[str] = None
    value: Optional[float] = None
    weight: Optional[float] = None
    materials: Tuple[str, ...] = ()
    manufacturer: Optional[str] = None
    brand_name: Optional[str] = None
    model: Optional[str] = None
    intended_use: Optional[str] = None
    existing_classifications: Tuple[PriorClassification, ...] = ()
    user_history: Tuple[UserHistoryEntry, ...] = ()

    @property
    def key(self) -> str:
        """Short label used to identify the product in batch error reports."""

        return self.product_name or self.product_description[:50]

    def to_payload(self) -> Dict[str, Any]:
        """camelCase JSON body sent to remote classification sources."""

        return {
            "productDescription": self.product_description,
            "productName": self.product_name,
            "productCategory": self.product_category,
            "originCountry": self.origin_country,
            "destinationCountry": self.destination_country,
            "value": self.value,
            "weight": self.weight,
            "materials": list(self.materials),
            "manufacturer": self.manufacturer,
            "brandName": self.brand_name,
            "model": self.model,
            "intendedUse": self.intended_use,
        }


@dataclass
class RuleEvaluation:
    applied_rules: List[str] = field(default_factory=list)
    flags: List[ClassificationFlag] = field(default_factory=list)
    requirements: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Suggestion:
    """A candidate code from an AI source (or other upstream)."""

    hs_code: str
    confidence: float
    reasoning: str = ""


@dataclass
class ClassificationDecision:
    hs_code: str
    confidence: float
    reasoning: str
    source: DecisionSource
    applied_rules: List[str]
    requires_review: bool
    auto_approved: bool
    flags: List[ClassificationFlag]


# ---------------------------------------------------------------------------
# Validation (external collaborator contract)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationIssue:
    message: str
    rule_id: str
    suggestion: Optional[str] = None


@dataclass
class ValidationReport:
    score: float
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ValidationContext:
    hs_code: str
    product_description: Optional[str] = None
    product_category: Optional[str] = None
    origin_country: Optional[str] = None
    destination_country: Optional[str] = None
    confidence: Optional[float] = None
    existing_classifications: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Confidence + thresholds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThresholdCondition:
    field: str
    operator: ThresholdOperator
    value: Any = None
    weight: Optional[float] = None


@dataclass(frozen=True)
class ThresholdAction:
    type: ThresholdActionType
    message: str
    notification_level: NotificationLevel = NotificationLevel.MEDIUM
    assign_to: Optional[str] = None
    deadline: Optional[float] = None
    parameters: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfidenceThreshold:
    id: str
    name: str
    min_confidence: float
    max_confidence: float
    action: ThresholdAction
    priority: int = 10
    enabled: bool = True
    description: str = ""
    category: Optional[str] = None
    conditions: Tuple[ThresholdCondition, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def contains(self, score: float) -> bool:
        return self.min_confidence <= score <= self.max_confidence


@dataclass(frozen=True)
class ThresholdResult:
    threshold: ConfidenceThreshold
    triggered: bool
    confidence: float
    action: ThresholdAction
    reasoning: str
    next_steps: Tuple[str, ...]
    estimated_resolution_time: float


@dataclass(frozen=True)
class ConfidenceFactor:
    name: str
    impact: float
    weight: float
    description: str
    source: FactorSource


@dataclass(frozen=True)
class ConfidenceAdjustment:
    reason: str
    adjustment: float
    applied_by: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ComponentConfidences:
    ai_model: float
    validation: float
    business_rules: float
    historical_consistency: float
    user_feedback: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "ai_model": self.ai_model,
            "validation": self.validation,
            "business_rules": self.business_rules,
            "historical_consistency": self.historical_consistency,
            "user_feedback": self.user_feedback,
        }


@dataclass(frozen=True)
class FeedbackEntry:
    rating: float
    comment: str = ""


@dataclass(frozen=True)
class AssessmentContext:
    product_description: Optional[str] = None
    category: Optional[str] = None
    product_value: Optional[float] = None
    historical_classifications: Sequence[PriorClassification] = ()
    user_feedback: Sequence[FeedbackEntry] = ()
    missing_fields: Sequence[str] = ()
    adjustments: Sequence[ConfidenceAdjustment] = ()


@dataclass
class ConfidenceAssessment:
    overall_confidence: float
    components: ComponentConfidences
    factors: List[ConfidenceFactor]
    adjustments: List[ConfidenceAdjustment]
    final_score: float
    reliability: Reliability
