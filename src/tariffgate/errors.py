"""Exception hierarchy shared by the classification and compliance layers."""

from __future__ import annotations


class TariffGateError(Exception):
    """Base class for all tariffgate errors."""


class InvalidPatternError(TariffGateError, ValueError):
    """Raised when a regex used as a business rule cannot be compiled."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class SourceError(TariffGateError):
    """Raised by classification source adapters on transport or payload failure."""


class PipelineStageError(TariffGateError):
    """A gating pipeline stage failed; the request must not be approved."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause


class DuplicateEntryError(TariffGateError, ValueError):
    """Raised when a registry already holds an entry with the given id."""
