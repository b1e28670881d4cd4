"""HTTP payload models for classification, confidence and rule administration."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tariffgate.classification.types import (
    AssessmentContext,
    ClassificationRule,
    ConditionOperator,
    ConfidenceAdjustment,
    ConfidenceThreshold,
    FeedbackEntry,
    NotificationLevel,
    PriorClassification,
    ProductContext,
    RuleAction,
    RuleActionType,
    RuleCondition,
    Severity,
    ThresholdAction,
    ThresholdActionType,
    ThresholdCondition,
    ThresholdOperator,
    UserHistoryEntry,
)


class PriorClassificationModel(BaseModel):
    hs_code: str
    confidence: float = Field(ge=0.0, le=100.0)
    date: Optional[datetime] = None
    source: str = ""

    model_config = ConfigDict(extra="forbid")

    def to_entity(self) -> PriorClassification:
        return PriorClassification(self.hs_code, self.confidence, self.date, self.source)


class UserHistoryModel(BaseModel):
    product_type: str
    hs_code: str
    accuracy: float = Field(ge=0.0, le=100.0)

    model_config = ConfigDict(extra="forbid")


class ClassificationRequestModel(BaseModel):
    """Product facts submitted for classification."""

    product_description: str = Field(..., min_length=1)
    product_name: Optional[str] = None
    product_category: Optional[str] = None
    origin_country: Optional[str] = Field(default=None, min_length=2, max_length=3)
    destination_country: Optional[str] = Field(default=None, min_length=2, max_length=3)
    value: Optional[float] = Field(default=None, ge=0.0)
    weight: Optional[float] = Field(default=None, ge=0.0)
    materials: List[str] = Field(default_factory=list)
    manufacturer: Optional[str] = None
    brand_name: Optional[str] = None
    model: Optional[str] = None
    intended_use: Optional[str] = None
    existing_classifications: List[PriorClassificationModel] = Field(default_factory=list)
    user_history: List[UserHistoryModel] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    def to_context(self) -> ProductContext:
        return ProductContext(
            product_description=self.product_description,
            product_name=self.product_name,
            product_category=self.product_category,
            origin_country=self.origin_country.upper() if self.origin_country else None,
            destination_country=self.destination_country.upper() if self.destination_country else None,
            value=self.value,
            weight=self.weight,
            materials=tuple(self.materials),
            manufacturer=self.manufacturer,
            brand_name=self.brand_name,
            model=self.model,
            intended_use=self.intended_use,
            existing_classifications=tuple(item.to_entity() for item in self.existing_classifications),
            user_history=tuple(
                UserHistoryEntry(item.product_type, item.hs_code, item.accuracy) for item in self.user_history
            ),
        )


class BatchClassificationRequest(BaseModel):
    items: List[ClassificationRequestModel] = Field(..., min_length=1, max_length=500)

    model_config = ConfigDict(extra="forbid")


class BatchSubmitResponse(BaseModel):
    job_id: str
    status: str
    total_items: int
    message: str

    model_config = ConfigDict(extra="forbid")


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    total_items: int
    created_at: str
    updated_at: str
    run_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


class FeedbackModel(BaseModel):
    rating: float = Field(ge=1.0, le=5.0)
    comment: str = ""

    model_config = ConfigDict(extra="forbid")


class AdjustmentModel(BaseModel):
    reason: str
    adjustment: float = Field(ge=-100.0, le=100.0)
    applied_by: str

    model_config = ConfigDict(extra="forbid")


class ConfidenceAssessRequest(BaseModel):
    ai_confidence: float = Field(ge=0.0, le=100.0)
    validation_score: float = Field(ge=0.0, le=100.0)
    business_rule_score: float = Field(ge=0.0, le=100.0)
    product_description: Optional[str] = None
    category: Optional[str] = None
    product_value: Optional[float] = Field(default=None, ge=0.0)
    historical_classifications: List[PriorClassificationModel] = Field(default_factory=list)
    user_feedback: List[FeedbackModel] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    adjustments: List[AdjustmentModel] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    def to_context(self) -> AssessmentContext:
        return AssessmentContext(
            product_description=self.product_description,
            category=self.category,
            product_value=self.product_value,
            historical_classifications=[item.to_entity() for item in self.historical_classifications],
            user_feedback=[FeedbackEntry(item.rating, item.comment) for item in self.user_feedback],
            missing_fields=list(self.missing_fields),
            adjustments=[
                ConfidenceAdjustment(item.reason, item.adjustment, item.applied_by) for item in self.adjustments
            ],
        )


class ThresholdEvaluateRequest(BaseModel):
    final_score: float = Field(ge=0.0, le=100.0)
    context: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Rule administration
# ---------------------------------------------------------------------------


class RuleConditionModel(BaseModel):
    field: str
    operator: ConditionOperator
    value: Any = None
    case_sensitive: bool = False

    model_config = ConfigDict(extra="forbid")

    def to_entity(self) -> RuleCondition:
        value = tuple(self.value) if isinstance(self.value, list) else self.value
        return RuleCondition(self.field, self.operator, value, self.case_sensitive)


class RuleActionModel(BaseModel):
    type: RuleActionType
    message: str
    severity: Severity = Severity.MEDIUM
    target: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_entity(self) -> RuleAction:
        return RuleAction(self.type, self.message, self.severity, self.target)


class RuleModel(BaseModel):
    id: str = ""
    name: str = Field(..., min_length=1)
    description: str = ""
    conditions: List[RuleConditionModel] = Field(default_factory=list)
    actions: List[RuleActionModel] = Field(..., min_length=1)
    priority: int = 10
    enabled: bool = True
    category: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_entity(self) -> ClassificationRule:
        return ClassificationRule(
            id=self.id,
            name=self.name,
            description=self.description,
            conditions=tuple(item.to_entity() for item in self.conditions),
            actions=tuple(item.to_entity() for item in self.actions),
            priority=self.priority,
            enabled=self.enabled,
            category=self.category,
        )


class RuleUpdateModel(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    conditions: Optional[List[RuleConditionModel]] = None
    actions: Optional[List[RuleActionModel]] = None
    priority: Optional[int] = None
    enabled: Optional[bool] = None
    category: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_changes(self) -> Dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"conditions", "actions"})
        changes = {name: value for name, value in changes.items() if value is not None or name == "category"}
        if self.conditions is not None:
            changes["conditions"] = tuple(item.to_entity() for item in self.conditions)
        if self.actions is not None:
            changes["actions"] = tuple(item.to_entity() for item in self.actions)
        return changes


class RuleTestRequest(BaseModel):
    context: ClassificationRequestModel

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Threshold administration
# ---------------------------------------------------------------------------


class ThresholdConditionModel(BaseModel):
    field: str
    operator: ThresholdOperator
    value: Any = None
    weight: Optional[float] = None

    model_config = ConfigDict(extra="forbid")

    def to_entity(self) -> ThresholdCondition:
        value = tuple(self.value) if isinstance(self.value, list) else self.value
        return ThresholdCondition(self.field, self.operator, value, self.weight)


class ThresholdActionModel(BaseModel):
    type: ThresholdActionType
    message: str
    notification_level: NotificationLevel = NotificationLevel.MEDIUM
    assign_to: Optional[str] = None
    deadline: Optional[float] = Field(default=None, ge=0.0)
    parameters: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def to_entity(self) -> ThresholdAction:
        return ThresholdAction(
            self.type, self.message, self.notification_level, self.assign_to, self.deadline, dict(self.parameters)
        )


class ThresholdModel(BaseModel):
    id: str = ""
    name: str = Field(..., min_length=1)
    description: str = ""
    category: Optional[str] = None
    min_confidence: float = Field(ge=0.0, le=100.0)
    max_confidence: float = Field(ge=0.0, le=100.0)
    action: ThresholdActionModel
    conditions: List[ThresholdConditionModel] = Field(default_factory=list)
    priority: int = 10
    enabled: bool = True

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_band(self) -> "ThresholdModel":
        if self.min_confidence > self.max_confidence:
            raise ValueError("min_confidence must not exceed max_confidence")
        return self

    def to_entity(self) -> ConfidenceThreshold:
        return ConfidenceThreshold(
            id=self.id,
            name=self.name,
            description=self.description,
            category=self.category,
            min_confidence=self.min_confidence,
            max_confidence=self.max_confidence,
            action=self.action.to_entity(),
            conditions=tuple(item.to_entity() for item in self.conditions),
            priority=self.priority,
            enabled=self.enabled,
        )


class ThresholdUpdateModel(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    max_confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    action: Optional[ThresholdActionModel] = None
    conditions: Optional[List[ThresholdConditionModel]] = None
    priority: Optional[int] = None
    enabled: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")

    def to_changes(self) -> Dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"action", "conditions"})
        changes = {name: value for name, value in changes.items() if value is not None or name == "category"}
        if self.action is not None:
            changes["action"] = self.action.to_entity()
        if self.conditions is not None:
            changes["conditions"] = tuple(item.to_entity() for item in self.conditions)
        return changes
