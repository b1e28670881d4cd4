"""HS classification decision pipeline: rules, confidence, thresholds, orchestration."""

from .confidence import CalibrationMetrics, ConfidenceAssessor
from .orchestrator import (
    BatchError,
    BatchOutcome,
    ClassificationOrchestrator,
    ClassificationOutcome,
    determine_final_decision,
    identify_missing_fields,
)
from .rules import RuleEngine, RuleRegistry, default_rules
from .sources import (
    DEFAULT_SOURCE_CONFIGS,
    CallableSource,
    ClassificationSource,
    ConfiguredSource,
    HttpJsonSource,
    SourceConfig,
    SourceSuggestion,
    configure_sources,
)
from .thresholds import ThresholdRegistry, ThresholdRouter, default_thresholds
from .types import (
    AssessmentContext,
    ClassificationDecision,
    ClassificationFlag,
    ClassificationRule,
    ConditionOperator,
    ConfidenceAssessment,
    ConfidenceThreshold,
    FinalDecision,
    ProductContext,
    Reliability,
    RuleAction,
    RuleActionType,
    RuleCondition,
    RuleEvaluation,
    Suggestion,
    ThresholdResult,
    ValidationIssue,
    ValidationReport,
)
from .validator import BasicHSCodeValidator, HSCodeValidator

__all__ = [
    "CalibrationMetrics",
    "ConfidenceAssessor",
    "BatchError",
    "BatchOutcome",
    "ClassificationOrchestrator",
    "ClassificationOutcome",
    "determine_final_decision",
    "identify_missing_fields",
    "RuleEngine",
    "RuleRegistry",
    "default_rules",
    "DEFAULT_SOURCE_CONFIGS",
    "CallableSource",
    "ClassificationSource",
    "ConfiguredSource",
    "HttpJsonSource",
    "SourceConfig",
    "SourceSuggestion",
    "configure_sources",
    "ThresholdRegistry",
    "ThresholdRouter",
    "default_thresholds",
    "AssessmentContext",
    "ClassificationDecision",
    "ClassificationFlag",
    "ClassificationRule",
    "ConditionOperator",
    "ConfidenceAssessment",
    "ConfidenceThreshold",
    "FinalDecision",
    "ProductContext",
    "Reliability",
    "RuleAction",
    "RuleActionType",
    "RuleCondition",
    "RuleEvaluation",
    "Suggestion",
    "ThresholdResult",
    "ValidationIssue",
    "ValidationReport",
    "BasicHSCodeValidator",
    "HSCodeValidator",
]
