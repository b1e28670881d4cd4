"""Trade-compliance matching, duty and fee estimation."""

from .checker import ComplianceChecker
from .duty import DutySchedule, calculate_duty, calculate_fees, get_duty_schedule
from .restrictions import RestrictionRegistry, load_restrictions, restriction_from_dict
from .types import (
    AdditionalDutyType,
    ComplianceCheck,
    ComplianceRequirement,
    ComplianceResult,
    ComplianceWarning,
    DutyCalculation,
    RequirementType,
    RestrictionSeverity,
    RestrictionType,
    RiskLevel,
    TradeRestriction,
    WarningSeverity,
    WarningType,
)

__all__ = [
    "ComplianceChecker",
    "DutySchedule",
    "calculate_duty",
    "calculate_fees",
    "get_duty_schedule",
    "RestrictionRegistry",
    "load_restrictions",
    "restriction_from_dict",
    "AdditionalDutyType",
    "ComplianceCheck",
    "ComplianceRequirement",
    "ComplianceResult",
    "ComplianceWarning",
    "DutyCalculation",
    "RequirementType",
    "RestrictionSeverity",
    "RestrictionType",
    "RiskLevel",
    "TradeRestriction",
    "WarningSeverity",
    "WarningType",
]
