"""Process-wide pipeline components shared by the HTTP routes."""

from __future__ import annotations

from functools import lru_cache

from tariffgate.classification import (
    ClassificationOrchestrator,
    ConfidenceAssessor,
    HttpJsonSource,
    RuleEngine,
    ThresholdRouter,
    configure_sources,
)
from tariffgate.compliance import ComplianceChecker
from tariffgate.config import Settings, get_settings


@lru_cache(maxsize=1)
def get_runtime_settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_rule_engine() -> RuleEngine:
    return RuleEngine()


@lru_cache(maxsize=1)
def get_compliance_checker() -> ComplianceChecker:
    return ComplianceChecker()


@lru_cache(maxsize=1)
def get_threshold_router() -> ThresholdRouter:
    return ThresholdRouter()


@lru_cache(maxsize=1)
def get_confidence_assessor() -> ConfidenceAssessor:
    return ConfidenceAssessor()


@lru_cache(maxsize=1)
def get_orchestrator() -> ClassificationOrchestrator:
    settings = get_runtime_settings()
    sources = {
        name: HttpJsonSource(name=name, url=url, timeout=settings.source_timeout_seconds)
        for name, url in settings.source_endpoints
    }
    return ClassificationOrchestrator(
        configure_sources(sources),
        engine=get_rule_engine(),
        checker=get_compliance_checker(),
        assessor=get_confidence_assessor(),
        router=get_threshold_router(),
        settings=settings,
    )


def reset_services() -> None:
    """Drop cached components so the next request rebuilds them from the environment."""

    for getter in (
        get_orchestrator,
        get_confidence_assessor,
        get_threshold_router,
        get_compliance_checker,
        get_rule_engine,
        get_runtime_settings,
    ):
        getter.cache_clear()
