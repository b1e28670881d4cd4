from datetime import datetime, timezone

import pytest

from tariffgate.compliance import (
    ComplianceCheck,
    ComplianceChecker,
    RestrictionRegistry,
    RestrictionSeverity,
    RestrictionType,
    RiskLevel,
    TradeRestriction,
    WarningType,
)
from tariffgate.errors import InvalidPatternError


def _restriction(**overrides) -> TradeRestriction:
    fields = dict(
        id="us-toys-test",
        country="US",
        hs_code_pattern="^95",
        restriction_type=RestrictionType.CONTROLLED,
        description="Toy safety testing",
        severity=RestrictionSeverity.MEDIUM,
        effective_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return TradeRestriction(**fields)


def _ids(restrictions):
    return sorted(r.id for r in restrictions)


def test_firearms_to_us_are_prohibited_and_critical(checker):
    result = checker.check_compliance(ComplianceCheck("9302.00", "DE", "US"))

    assert _ids(result.restrictions) == ["us-firearms"]
    assert result.compliant is False
    assert result.risk_level == RiskLevel.CRITICAL
    warning_types = [w.type for w in result.warnings]
    assert WarningType.RESTRICTION in warning_types
    assert WarningType.LICENSING in warning_types
    assert result.duty is None
    assert result.additional_fees == []


def test_origin_filter_limits_country_specific_restrictions(checker):
    from_china = checker.applicable_restrictions(ComplianceCheck("8517.12.00", "CN", "US"))
    from_germany = checker.applicable_restrictions(ComplianceCheck("8517.12.00", "DE", "US"))

    assert _ids(from_china) == ["general-dual-use", "us-electronics-china"]
    assert _ids(from_germany) == ["general-dual-use"]


def test_wildcard_restrictions_apply_to_every_destination(checker):
    result = checker.check_compliance(ComplianceCheck("2933.00", "DE", "JP"))

    assert _ids(result.restrictions) == ["general-narcotics"]
    assert result.risk_level == RiskLevel.CRITICAL
    assert result.compliant is False


def test_unrestricted_product_is_low_risk(checker):
    result = checker.check_compliance(ComplianceCheck("9503.00", "DE", "US"))

    assert result.restrictions == []
    assert result.compliant is True
    assert result.risk_level == RiskLevel.LOW
    assert result.recommendations[0] == "No specific trade restrictions identified for this product"


def test_dual_use_chapter_adds_action_required_warning(checker):
    result = checker.check_compliance(ComplianceCheck("9018.90", "DE", "GB"))

    dual_use = [w for w in result.warnings if "dual-use" in w.message]
    assert len(dual_use) == 1
    assert dual_use[0].action_required is True
    assert "Verify end-user and end-use to ensure compliance with export controls" in result.recommendations


def test_high_value_shipments_need_invoice_and_broker(checker):
    result = checker.check_compliance(ComplianceCheck("9503.00", "DE", "US", product_value=5000.0))

    descriptions = [r.description for r in result.requirements]
    assert "Commercial Invoice required" in descriptions
    assert any(w.type == WarningType.DOCUMENTATION for w in result.warnings)
    assert "Consider using a licensed customs broker for high-value shipments" in result.recommendations
    assert result.risk_level == RiskLevel.LOW


def test_requirements_are_classified_by_kind(checker):
    result = checker.check_compliance(ComplianceCheck("9302.00", "DE", "US"))

    by_description = {r.description: r for r in result.requirements}
    license_req = by_description["ATF Import License"]
    assert license_req.type.value == "license"
    assert license_req.processing_time == "2-8 weeks"
    assert license_req.cost == 500.0
    assert by_description["Background Check"].type.value == "documentation"


def test_specific_restriction_lookup_filters_by_type(checker):
    prohibited = checker.check_specific_restriction("9302.00", "US", RestrictionType.PROHIBITED)
    quotas = checker.check_specific_restriction("9302.00", "US", RestrictionType.QUOTA)

    assert _ids(prohibited) == ["us-firearms"]
    assert quotas == []


class TestCacheBounds:
    def test_distinct_codes_stay_within_the_cap(self):
        checker = ComplianceChecker(max_cache_entries=50)

        for n in range(2000):
            checker.applicable_restrictions(ComplianceCheck(f"9503.{n:04d}", "DE", "US"))

        assert checker.cache_size == 50

    def test_least_recently_used_entry_is_evicted_first(self, clock):
        checker = ComplianceChecker(clock=clock, max_cache_entries=2)
        toys, firearms, shirts = (
            ComplianceCheck("9503.00", "DE", "US"),
            ComplianceCheck("9302.00", "DE", "US"),
            ComplianceCheck("6109.10", "CN", "US"),
        )
        checker.applicable_restrictions(toys)
        checker.applicable_restrictions(firearms)
        checker.applicable_restrictions(toys)
        checker.applicable_restrictions(shirts)

        assert list(checker._cache) == [checker._cache_key(toys), checker._cache_key(shirts)]
        assert _ids(checker.applicable_restrictions(firearms)) == ["us-firearms"]


class TestCacheInvalidation:
    def test_add_clears_cache_and_new_restriction_applies(self, checker):
        check = ComplianceCheck("9503.00", "DE", "US")
        assert checker.applicable_restrictions(check) == []
        assert checker.cache_size == 1

        checker.add_restriction(_restriction())

        assert checker.cache_size == 0
        assert _ids(checker.applicable_restrictions(check)) == ["us-toys-test"]

    def test_update_is_visible_on_next_check(self, checker):
        check = ComplianceCheck("9302.00", "DE", "US")
        assert checker.check_compliance(check).risk_level == RiskLevel.CRITICAL

        assert checker.update_restriction("us-firearms", severity=RestrictionSeverity.MEDIUM)

        result = checker.check_compliance(check)
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.compliant is False

    def test_delete_is_visible_on_next_check(self, checker):
        check = ComplianceCheck("9302.00", "DE", "US")
        checker.applicable_restrictions(check)

        assert checker.delete_restriction("us-firearms")
        assert checker.delete_restriction("us-firearms") is False

        assert checker.applicable_restrictions(check) == []
        assert checker.check_compliance(check).compliant is True

    def test_cache_key_distinguishes_origin(self, checker):
        checker.applicable_restrictions(ComplianceCheck("8517.12", "CN", "US"))
        checker.applicable_restrictions(ComplianceCheck("8517.12", "DE", "US"))

        assert checker.cache_size == 2


def test_cached_matches_never_outlive_expiry(checker, clock):
    checker.add_restriction(
        _restriction(expiry_date=datetime(2025, 7, 1, tzinfo=timezone.utc))
    )
    check = ComplianceCheck("9503.00", "DE", "US")
    assert _ids(checker.applicable_restrictions(check)) == ["us-toys-test"]

    clock.now = datetime(2025, 8, 1, tzinfo=timezone.utc)

    assert checker.applicable_restrictions(check) == []
    assert checker.cache_size == 1


def test_future_restrictions_are_not_active_yet(checker):
    checker.add_restriction(_restriction(effective_date=datetime(2026, 1, 1, tzinfo=timezone.utc)))

    assert checker.applicable_restrictions(ComplianceCheck("9503.00", "DE", "US")) == []


def test_invalid_pattern_is_rejected_at_registration(checker):
    with pytest.raises(InvalidPatternError):
        checker.add_restriction(_restriction(hs_code_pattern="^(95"))
    assert checker.registry.get("us-toys-test") is None


def test_expiry_before_effective_date_is_rejected(checker):
    with pytest.raises(ValueError):
        checker.add_restriction(
            _restriction(expiry_date=datetime(2023, 1, 1, tzinfo=timezone.utc))
        )


def test_blank_id_is_generated():
    checker = ComplianceChecker(RestrictionRegistry([]))

    restriction_id = checker.add_restriction(_restriction(id=""))

    assert restriction_id.startswith("restriction-")
    assert checker.registry.version == 1


def test_get_restrictions_by_country_includes_wildcards(checker):
    eu = _ids(checker.get_restrictions("EU"))

    assert "eu-toys-safety" in eu
    assert "general-dual-use" in eu
    assert "us-firearms" not in eu
    assert len(checker.get_restrictions()) == 10
