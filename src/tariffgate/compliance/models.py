"""HTTP payload models for compliance checks and restriction administration."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tariffgate.compliance.restrictions import parse_date
from tariffgate.compliance.types import ComplianceCheck, RestrictionSeverity, RestrictionType, TradeRestriction


def _country(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value if value == "*" else value.upper()


class ComplianceCheckRequest(BaseModel):
    hs_code: str = Field(..., min_length=2, max_length=20)
    origin_country: str = Field(..., min_length=2, max_length=3)
    destination_country: str = Field(..., min_length=2, max_length=3)
    product_value: Optional[float] = Field(default=None, ge=0.0)
    product_weight: Optional[float] = Field(default=None, ge=0.0)
    intended_use: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_check(self) -> ComplianceCheck:
        return ComplianceCheck(
            hs_code=self.hs_code.strip(),
            origin_country=self.origin_country.upper(),
            destination_country=self.destination_country.upper(),
            product_value=self.product_value,
            product_weight=self.product_weight,
            intended_use=self.intended_use,
        )


class RestrictionModel(BaseModel):
    id: str = ""
    country: str = Field(..., min_length=1, max_length=3)
    hs_code_pattern: str = Field(..., min_length=1)
    restriction_type: RestrictionType
    description: str = ""
    severity: RestrictionSeverity
    effective_date: datetime
    expiry_date: Optional[datetime] = None
    requirements: List[str] = Field(default_factory=list)
    authority: str = ""
    origin_countries: List[str] = Field(default_factory=list)
    exemptions: List[str] = Field(default_factory=list)
    reference_url: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("country")
    @classmethod
    def _normalize_country(cls, value: str) -> str:
        return _country(value)

    def to_entity(self) -> TradeRestriction:
        return TradeRestriction(
            id=self.id,
            country=self.country,
            hs_code_pattern=self.hs_code_pattern,
            restriction_type=self.restriction_type,
            description=self.description,
            severity=self.severity,
            effective_date=parse_date(self.effective_date),
            expiry_date=parse_date(self.expiry_date),
            requirements=tuple(self.requirements),
            authority=self.authority,
            origin_countries=tuple(_country(c) for c in self.origin_countries),
            exemptions=tuple(self.exemptions),
            reference_url=self.reference_url,
        )


class RestrictionUpdateModel(BaseModel):
    country: Optional[str] = Field(default=None, min_length=1, max_length=3)
    hs_code_pattern: Optional[str] = Field(default=None, min_length=1)
    restriction_type: Optional[RestrictionType] = None
    description: Optional[str] = None
    severity: Optional[RestrictionSeverity] = None
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    requirements: Optional[List[str]] = None
    authority: Optional[str] = None
    origin_countries: Optional[List[str]] = None
    exemptions: Optional[List[str]] = None
    reference_url: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_changes(self) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name in ("country", "hs_code_pattern", "restriction_type", "severity", "effective_date"):
                continue
            if name == "country":
                value = _country(value)
            elif name in ("effective_date", "expiry_date"):
                value = parse_date(value)
            elif name == "origin_countries":
                value = tuple(_country(c) for c in value or ())
            elif name in ("requirements", "exemptions"):
                value = tuple(value or ())
            changes[name] = value
        return changes
