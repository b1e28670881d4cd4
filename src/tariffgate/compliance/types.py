"""Trade-compliance data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class RestrictionType(str, Enum):
    PROHIBITED = "prohibited"
    RESTRICTED = "restricted"
    CONTROLLED = "controlled"
    QUOTA = "quota"
    LICENSE = "license"
    DUTY = "duty"


class RestrictionSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WarningType(str, Enum):
    DOCUMENTATION = "documentation"
    LICENSING = "licensing"
    QUOTA = "quota"
    DUTY = "duty"
    RESTRICTION = "restriction"


class WarningSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RequirementType(str, Enum):
    LICENSE = "license"
    PERMIT = "permit"
    CERTIFICATE = "certificate"
    DOCUMENTATION = "documentation"
    INSPECTION = "inspection"


class AdditionalDutyType(str, Enum):
    ANTIDUMPING = "antidumping"
    COUNTERVAILING = "countervailing"
    SAFEGUARD = "safeguard"
    RETALIATORY = "retaliatory"


@dataclass(frozen=True)
class TradeRestriction:
    """A country (or ``*``) restriction applying to HS codes matching a regex."""

    id: str
    country: str
    hs_code_pattern: str
    restriction_type: RestrictionType
    description: str
    severity: RestrictionSeverity
    effective_date: datetime
    requirements: Tuple[str, ...] = ()
    expiry_date: Optional[datetime] = None
    authority: str = ""
    # Empty means the restriction applies to every origin.
    origin_countries: Tuple[str, ...] = ()
    exemptions: Tuple[str, ...] = ()
    reference_url: Optional[str] = None


@dataclass(frozen=True)
class ComplianceCheck:
    hs_code: str
    origin_country: str
    destination_country: str
    product_value: Optional[float] = None
    product_weight: Optional[float] = None
    intended_use: Optional[str] = None

    @property
    def chapter(self) -> str:
        return "".join(ch for ch in self.hs_code if ch.isdigit())[:2]


@dataclass(frozen=True)
class ComplianceWarning:
    type: WarningType
    message: str
    severity: WarningSeverity
    action_required: bool


@dataclass(frozen=True)
class ComplianceRequirement:
    type: RequirementType
    description: str
    authority: str
    processing_time: Optional[str] = None
    cost: Optional[float] = None
    validity_period: Optional[str] = None


@dataclass(frozen=True)
class AdditionalDuty:
    type: AdditionalDutyType
    rate: float
    description: str


@dataclass(frozen=True)
class DutyCalculation:
    base_rate: float
    additional_duties: Tuple[AdditionalDuty, ...]
    total_rate: float
    estimated_amount: float
    currency: str
    calculation_date: datetime
    valid_until: datetime


@dataclass(frozen=True)
class AdditionalFee:
    type: str
    amount: float
    description: str


@dataclass
class ComplianceResult:
    compliant: bool
    restrictions: List[TradeRestriction]
    warnings: List[ComplianceWarning]
    requirements: List[ComplianceRequirement]
    risk_level: RiskLevel
    recommendations: List[str] = field(default_factory=list)
    duty: Optional[DutyCalculation] = None
    additional_fees: List[AdditionalFee] = field(default_factory=list)

    @property
    def estimated_duty_rate(self) -> Optional[float]:
        return self.duty.total_rate if self.duty is not None else None
