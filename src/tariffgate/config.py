"""Environment-driven runtime settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Tuple

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _parse_keys(raw: str | None) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(dict.fromkeys(key.strip() for key in raw.split(",") if key.strip()))


def _parse_endpoints(raw: str | None) -> Tuple[Tuple[str, str], ...]:
    """Parse ``name=url,name=url`` into ordered (name, url) pairs."""

    if not raw:
        return ()
    endpoints = []
    for chunk in raw.split(","):
        name, sep, url = chunk.partition("=")
        if not sep or not name.strip() or not url.strip():
            logger.warning("Ignoring malformed source endpoint %r", chunk)
            continue
        endpoints.append((name.strip(), url.strip()))
    return tuple(endpoints)


@dataclass(frozen=True)
class Settings:
    # Fan-out stops at the first source whose weighted confidence reaches this.
    early_exit_confidence: float = 75.0
    batch_concurrency: int = 5
    batch_pause_seconds: float = 0.1
    source_timeout_seconds: float = 30.0
    source_endpoints: Tuple[Tuple[str, str], ...] = ()
    # Empty means the development key "dev-key" is accepted.
    api_keys: Tuple[str, ...] = ()
    rate_limit_per_minute: int = 120
    rate_window_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            early_exit_confidence=_env_float("TGATE_EARLY_EXIT_CONFIDENCE", 75.0),
            batch_concurrency=max(1, _env_int("TGATE_BATCH_CONCURRENCY", 5)),
            batch_pause_seconds=max(0.0, _env_float("TGATE_BATCH_PAUSE_SEC", 0.1)),
            source_timeout_seconds=max(1.0, _env_float("TGATE_SOURCE_TIMEOUT_SEC", 30.0)),
            source_endpoints=_parse_endpoints(os.getenv("TGATE_SOURCE_ENDPOINTS")),
            api_keys=_parse_keys(os.getenv("TGATE_API_KEYS")),
            rate_limit_per_minute=max(1, _env_int("TGATE_RATE_LIMIT_PER_MINUTE", 120)),
            rate_window_seconds=max(1.0, _env_float("TGATE_RATE_WINDOW_SEC", 60.0)),
        )


def get_settings() -> Settings:
    """Read settings from the current environment."""

    return Settings.from_env()
