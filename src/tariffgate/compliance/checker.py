"""Trade-compliance matcher.

Matches an HS code + route against the restriction registry, derives
warnings and requirements, and estimates duty and fees.  Pattern
matches are cached per (destination, HS code, origin); the cache is
cleared inside the registry's write lock on every mutation, and each entry
also records the registry version it was computed from.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from tariffgate.compliance.duty import DutySchedule, calculate_duty, calculate_fees, get_duty_schedule
from tariffgate.compliance.restrictions import RestrictionRegistry, is_active
from tariffgate.compliance.types import (
    ComplianceCheck,
    ComplianceRequirement,
    ComplianceResult,
    ComplianceWarning,
    RequirementType,
    RestrictionSeverity,
    RestrictionType,
    RiskLevel,
    TradeRestriction,
    WarningSeverity,
    WarningType,
)
from tariffgate.patterns import safe_search

logger = logging.getLogger(__name__)

DUAL_USE_CHAPTERS = frozenset({"84", "85", "90", "91"})
HIGH_VALUE_DOCUMENTATION_THRESHOLD = 2500.0
COMMERCIAL_INVOICE_THRESHOLD = 800.0

# Ordered (keyword, value) lookups; first keyword found in the requirement wins.
PROCESSING_TIMES: Tuple[Tuple[str, str], ...] = (("license", "2-8 weeks"), ("permit", "1-4 weeks"))
DEFAULT_PROCESSING_TIME = "1-2 weeks"
REQUIREMENT_COSTS: Tuple[Tuple[str, float], ...] = (("license", 500.0), ("permit", 200.0))
DEFAULT_REQUIREMENT_COST = 100.0
VALIDITY_PERIODS: Tuple[Tuple[str, str], ...] = (("certificate", "1 year"),)
DEFAULT_VALIDITY_PERIOD = "6 months"
INSPECTION_PROCESSING_TIME = "1-3 business days"

CacheKey = Tuple[str, str, str]
# Least recently used route/code matches are evicted past this many entries.
DEFAULT_CACHE_ENTRIES = 1024


def _lookup(requirement: str, table: Iterable[Tuple[str, object]], default):
    lowered = requirement.lower()
    for keyword, value in table:
        if keyword in lowered:
            return value
    return default


def classify_requirement(requirement: str, authority: str) -> ComplianceRequirement:
    """Map free-text restriction requirements onto a requirement kind."""

    lowered = requirement.lower()
    if "license" in lowered:
        return ComplianceRequirement(
            type=RequirementType.LICENSE,
            description=requirement,
            authority=authority,
            processing_time=_lookup(requirement, PROCESSING_TIMES, DEFAULT_PROCESSING_TIME),
            cost=_lookup(requirement, REQUIREMENT_COSTS, DEFAULT_REQUIREMENT_COST),
        )
    if "certificate" in lowered:
        return ComplianceRequirement(
            type=RequirementType.CERTIFICATE,
            description=requirement,
            authority=authority,
            validity_period=_lookup(requirement, VALIDITY_PERIODS, DEFAULT_VALIDITY_PERIOD),
        )
    if "inspection" in lowered:
        return ComplianceRequirement(
            type=RequirementType.INSPECTION,
            description=requirement,
            authority=authority,
            processing_time=INSPECTION_PROCESSING_TIME,
        )
    return ComplianceRequirement(
        type=RequirementType.DOCUMENTATION,
        description=requirement,
        authority=authority,
    )


def is_dual_use(hs_code: str) -> bool:
    digits = "".join(ch for ch in hs_code if ch.isdigit())
    return digits[:2] in DUAL_USE_CHAPTERS


def assess_risk_level(
    restrictions: List[TradeRestriction], warnings: List[ComplianceWarning]
) -> RiskLevel:
    if any(r.severity == RestrictionSeverity.CRITICAL for r in restrictions) or any(
        w.severity == WarningSeverity.HIGH and w.action_required for w in warnings
    ):
        return RiskLevel.CRITICAL
    if any(r.severity == RestrictionSeverity.HIGH for r in restrictions) or any(
        w.severity == WarningSeverity.HIGH for w in warnings
    ):
        return RiskLevel.HIGH
    if any(r.severity == RestrictionSeverity.MEDIUM for r in restrictions) or any(
        w.severity == WarningSeverity.MEDIUM for w in warnings
    ):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def determine_compliance(
    restrictions: List[TradeRestriction], warnings: List[ComplianceWarning]
) -> bool:
    if any(r.restriction_type == RestrictionType.PROHIBITED for r in restrictions):
        return False
    return not any(w.severity == WarningSeverity.HIGH and w.action_required for w in warnings)


class ComplianceChecker:
    """Restriction matcher, warning/requirement deriver and duty estimator."""

    def __init__(
        self,
        registry: RestrictionRegistry | None = None,
        duty_schedule: DutySchedule | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        max_cache_entries: int = DEFAULT_CACHE_ENTRIES,
    ) -> None:
        self.registry = registry if registry is not None else RestrictionRegistry()
        self.duty_schedule = duty_schedule if duty_schedule is not None else get_duty_schedule()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_cache_entries = max(1, max_cache_entries)
        self._cache: OrderedDict[CacheKey, Tuple[int, Tuple[TradeRestriction, ...]]] = OrderedDict()
        self._cache_lock = threading.Lock()
        self.registry.on_mutation(self._invalidate)

    # -- admin mutation API -------------------------------------------------

    def add_restriction(self, restriction: TradeRestriction) -> str:
        return self.registry.add(restriction)

    def update_restriction(self, restriction_id: str, **changes) -> bool:
        return self.registry.update(restriction_id, **changes)

    def delete_restriction(self, restriction_id: str) -> bool:
        return self.registry.delete(restriction_id)

    def get_restrictions(self, country: Optional[str] = None) -> List[TradeRestriction]:
        if country:
            return self.registry.for_country(country)
        return self.registry.list()

    def _invalidate(self, version: int) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.debug("Compliance cache cleared at restriction registry version %d", version)

    @property
    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    # -- matching -----------------------------------------------------------

    def _cache_key(self, check: ComplianceCheck) -> CacheKey:
        return (
            check.destination_country.upper(),
            check.hs_code.strip(),
            (check.origin_country or "").upper(),
        )

    def _matching(self, check: ComplianceCheck) -> Tuple[TradeRestriction, ...]:
        # Route/pattern matches are cached; the date window is applied per call
        # so a cached entry can never outlive a restriction's expiry.
        key = self._cache_key(check)
        with self.registry.reading() as (version, entries):
            with self._cache_lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self._cache.move_to_end(key)
            if cached is not None and cached[0] == version:
                return cached[1]

            destination = check.destination_country.upper()
            origin = (check.origin_country or "").upper()
            matched = tuple(
                restriction
                for restriction in entries
                if restriction.country in (destination, "*")
                and (not restriction.origin_countries or origin in restriction.origin_countries)
                and safe_search(restriction.hs_code_pattern, check.hs_code)
            )
            with self._cache_lock:
                self._cache[key] = (version, matched)
                self._cache.move_to_end(key)
                while len(self._cache) > self.max_cache_entries:
                    self._cache.popitem(last=False)
        return matched

    def applicable_restrictions(self, check: ComplianceCheck) -> List[TradeRestriction]:
        now = self._clock()
        return [restriction for restriction in self._matching(check) if is_active(restriction, now)]

    def check_specific_restriction(
        self, hs_code: str, country: str, restriction_type: RestrictionType
    ) -> List[TradeRestriction]:
        check = ComplianceCheck(hs_code=hs_code, origin_country="XX", destination_country=country)
        return [r for r in self.applicable_restrictions(check) if r.restriction_type == restriction_type]

    # -- derived results ----------------------------------------------------

    def generate_warnings(
        self, check: ComplianceCheck, restrictions: List[TradeRestriction]
    ) -> List[ComplianceWarning]:
        warnings: List[ComplianceWarning] = []
        if any(r.severity == RestrictionSeverity.CRITICAL for r in restrictions):
            warnings.append(
                ComplianceWarning(
                    type=WarningType.RESTRICTION,
                    message=f"Critical restrictions apply to this product in {check.destination_country}",
                    severity=WarningSeverity.HIGH,
                    action_required=True,
                )
            )
        if any(
            r.restriction_type == RestrictionType.LICENSE
            or any("license" in req.lower() for req in r.requirements)
            for r in restrictions
        ):
            warnings.append(
                ComplianceWarning(
                    type=WarningType.LICENSING,
                    message="Import/export licenses may be required",
                    severity=WarningSeverity.MEDIUM,
                    action_required=True,
                )
            )
        if any(r.restriction_type == RestrictionType.QUOTA for r in restrictions):
            warnings.append(
                ComplianceWarning(
                    type=WarningType.QUOTA,
                    message="Product may be subject to quota limitations",
                    severity=WarningSeverity.MEDIUM,
                    action_required=True,
                )
            )
        if check.product_value and check.product_value > HIGH_VALUE_DOCUMENTATION_THRESHOLD:
            warnings.append(
                ComplianceWarning(
                    type=WarningType.DOCUMENTATION,
                    message="High-value shipment requires additional documentation",
                    severity=WarningSeverity.LOW,
                    action_required=False,
                )
            )
        if is_dual_use(check.hs_code):
            warnings.append(
                ComplianceWarning(
                    type=WarningType.RESTRICTION,
                    message="Product may be subject to dual-use export controls",
                    severity=WarningSeverity.HIGH,
                    action_required=True,
                )
            )
        return warnings

    def generate_requirements(
        self, check: ComplianceCheck, restrictions: List[TradeRestriction]
    ) -> List[ComplianceRequirement]:
        requirements = [
            classify_requirement(requirement, restriction.authority)
            for restriction in restrictions
            for requirement in restriction.requirements
        ]
        if check.product_value and check.product_value > COMMERCIAL_INVOICE_THRESHOLD:
            requirements.append(
                ComplianceRequirement(
                    type=RequirementType.DOCUMENTATION,
                    description="Commercial Invoice required",
                    authority="Customs Authority",
                )
            )
        return requirements

    def generate_recommendations(
        self, check: ComplianceCheck, restrictions: List[TradeRestriction]
    ) -> List[str]:
        recommendations: List[str] = []
        if not restrictions:
            recommendations.append("No specific trade restrictions identified for this product")
        if any(r.restriction_type == RestrictionType.LICENSE for r in restrictions):
            recommendations.append("Apply for required import/export licenses well in advance")
        if any(r.restriction_type == RestrictionType.CONTROLLED for r in restrictions):
            recommendations.append("Ensure all documentation and certifications are complete")
        if check.product_value and check.product_value > HIGH_VALUE_DOCUMENTATION_THRESHOLD:
            recommendations.append("Consider using a licensed customs broker for high-value shipments")
        if is_dual_use(check.hs_code):
            recommendations.append("Verify end-user and end-use to ensure compliance with export controls")
        recommendations.append("Verify HS code classification with customs authorities if uncertain")
        recommendations.append("Keep all trade documentation for audit purposes")
        return recommendations

    def check_compliance(self, check: ComplianceCheck) -> ComplianceResult:
        restrictions = self.applicable_restrictions(check)
        warnings = self.generate_warnings(check, restrictions)
        result = ComplianceResult(
            compliant=determine_compliance(restrictions, warnings),
            restrictions=restrictions,
            warnings=warnings,
            requirements=self.generate_requirements(check, restrictions),
            risk_level=assess_risk_level(restrictions, warnings),
            recommendations=self.generate_recommendations(check, restrictions),
            duty=calculate_duty(check, self.duty_schedule, now=self._clock()),
            additional_fees=calculate_fees(check, self.duty_schedule),
        )
        logger.debug(
            "Compliance %s -> %s: %d restrictions, risk=%s, compliant=%s",
            check.hs_code,
            check.destination_country,
            len(restrictions),
            result.risk_level.value,
            result.compliant,
        )
        return result
