"""Shared fixtures for tariffgate tests."""

from datetime import datetime, timezone
from typing import Callable, Iterator, List

import pytest

from tariffgate.classification import (
    CallableSource,
    ClassificationOrchestrator,
    ProductContext,
    configure_sources,
)
from tariffgate.compliance import ComplianceChecker
from tariffgate.config import Settings

FIXED_NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


class MutableClock:
    """Deterministic clock tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture()
def checker(clock) -> ComplianceChecker:
    return ComplianceChecker(clock=clock)


@pytest.fixture()
def fast_settings() -> Settings:
    return Settings(batch_concurrency=2, batch_pause_seconds=0.0)


def _answering(hs_code: str, confidence: float, calls: List[str] | None = None, name: str = "") -> Callable:
    """Build a source function returning a fixed suggestion and recording each call."""

    def _classify(request: ProductContext):
        if calls is not None:
            calls.append(name or hs_code)
        return {"hsCode": hs_code, "confidence": confidence, "reasoning": f"Matched {hs_code}"}

    return _classify


def _failing(message: str = "upstream unavailable") -> Callable:
    def _classify(request: ProductContext):
        raise RuntimeError(message)

    return _classify


@pytest.fixture()
def answering() -> Callable[..., Callable]:
    return _answering


@pytest.fixture()
def failing() -> Callable[..., Callable]:
    return _failing


@pytest.fixture()
def build_orchestrator(checker, fast_settings) -> Iterator[Callable[..., ClassificationOrchestrator]]:
    def _build(sources, **overrides) -> ClassificationOrchestrator:
        configured = configure_sources({name: CallableSource(name, func) for name, func in sources.items()})
        overrides.setdefault("checker", checker)
        overrides.setdefault("settings", fast_settings)
        return ClassificationOrchestrator(configured, **overrides)

    yield _build
