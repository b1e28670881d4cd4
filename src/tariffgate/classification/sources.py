"""AI classification source contract and adapters.

A source receives the product context and returns a candidate HS code with
a raw confidence, ``None`` when it has no answer, or raises.  Concrete
vendor clients live outside this package; they plug in either as a plain
callable (:class:`CallableSource`) or behind a JSON endpoint
(:class:`HttpJsonSource`).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Protocol, Union, runtime_checkable

import httpx

from tariffgate.classification.types import ProductContext
from tariffgate.errors import SourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceSuggestion:
    hs_code: str
    confidence: float
    reasoning: str = ""
    description: str = ""
    alternatives: tuple = ()


@dataclass(frozen=True)
class SourceConfig:
    name: str
    priority: int
    enabled: bool = True
    confidence_weight: float = 1.0


DEFAULT_SOURCE_CONFIGS = (
    SourceConfig("openai", priority=1, confidence_weight=1.0),
    SourceConfig("anthropic", priority=2, confidence_weight=0.95),
    SourceConfig("zonos", priority=3, confidence_weight=0.9),
    SourceConfig("customs", priority=4, enabled=False, confidence_weight=1.0),
)

SourceResult = Union[SourceSuggestion, Mapping[str, Any], None]


@runtime_checkable
class ClassificationSource(Protocol):
    name: str

    def classify(self, request: ProductContext) -> SourceResult:
        ...


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def coerce_suggestion(result: SourceResult) -> Optional[SourceSuggestion]:
    """Normalise a source result; malformed payloads raise :class:`SourceError`."""

    if result is None:
        return None
    if isinstance(result, SourceSuggestion):
        if not math.isfinite(result.confidence):
            raise SourceError(f"source confidence {result.confidence!r} is not finite")
        return result
    if not isinstance(result, Mapping):
        raise SourceError(f"unsupported source result type {type(result).__name__}")
    hs_code = _first(result, "hsCode", "hs_code")
    confidence = _first(result, "confidence")
    if not hs_code or confidence is None:
        raise SourceError("source result is missing hsCode or confidence")
    try:
        confidence_value = float(confidence)
    except (TypeError, ValueError) as exc:
        raise SourceError(f"source confidence {confidence!r} is not numeric") from exc
    if not math.isfinite(confidence_value):
        raise SourceError(f"source confidence {confidence!r} is not finite")
    alternatives = tuple(
        SourceSuggestion(
            hs_code=str(_first(alt, "hsCode", "hs_code", "code")),
            confidence=float(_first(alt, "confidence") or 0.0),
            reasoning=str(_first(alt, "reasoning") or ""),
        )
        for alt in result.get("alternatives") or ()
        if isinstance(alt, Mapping) and _first(alt, "hsCode", "hs_code", "code")
    )
    return SourceSuggestion(
        hs_code=str(hs_code),
        confidence=confidence_value,
        reasoning=str(_first(result, "reasoning") or ""),
        description=str(_first(result, "description") or ""),
        alternatives=alternatives,
    )


@dataclass
class CallableSource:
    """Wrap an in-process function as a classification source."""

    name: str
    func: Callable[[ProductContext], SourceResult]

    def classify(self, request: ProductContext) -> SourceResult:
        return self.func(request)


@dataclass
class HttpJsonSource:
    """POST the product context to a JSON endpoint returning ``{hsCode, confidence, reasoning}``."""

    name: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    client: Optional[httpx.Client] = None

    def classify(self, request: ProductContext) -> SourceResult:
        poster = self.client.post if self.client is not None else httpx.post
        try:
            response = poster(
                self.url,
                json=request.to_payload(),
                headers=dict(self.headers),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceError(f"{self.name}: request to {self.url} failed: {exc}") from exc
        if response.status_code == 204:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceError(f"{self.name}: response was not JSON") from exc
        if payload is None:
            return None
        return coerce_suggestion(payload)


@dataclass
class ConfiguredSource:
    """A source paired with its fan-out priority and confidence weight."""

    source: ClassificationSource
    config: SourceConfig

    @property
    def name(self) -> str:
        return self.config.name


def configure_sources(
    sources: Mapping[str, ClassificationSource],
    configs: tuple = DEFAULT_SOURCE_CONFIGS,
) -> List[ConfiguredSource]:
    """Pair sources with configs by name; sources without a config get a trailing default."""

    by_name = {config.name: config for config in configs}
    lowest = max((config.priority for config in configs), default=0)
    configured: List[ConfiguredSource] = []
    for offset, (name, source) in enumerate(sources.items(), start=1):
        config = by_name.get(name) or SourceConfig(name, priority=lowest + offset)
        configured.append(ConfiguredSource(source, config))
    return configured
