"""Compile-or-reject wrapper for regexes used as business rules.

Rule conditions and restriction HS patterns are authored by administrators,
so a broken expression must never take the pipeline down.  ``require_pattern``
is used at registration time and raises; ``safe_search`` is used at
evaluation time and treats any failure as a non-match.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Optional

from tariffgate.errors import InvalidPatternError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=512)
def _compile(pattern: str, flags: int) -> Optional[re.Pattern[str]]:
    try:
        return re.compile(pattern, flags)
    except (re.error, TypeError, OverflowError) as exc:
        logger.debug("Rejected pattern %r: %s", pattern, exc)
        return None


def compile_pattern(pattern: object, *, ignore_case: bool = False) -> Optional[re.Pattern[str]]:
    """Return the compiled pattern, or ``None`` if it cannot be compiled."""

    if not isinstance(pattern, str):
        return None
    return _compile(pattern, re.IGNORECASE if ignore_case else 0)


def require_pattern(pattern: object, *, ignore_case: bool = False) -> re.Pattern[str]:
    """Compile ``pattern`` or raise :class:`InvalidPatternError`."""

    if not isinstance(pattern, str):
        raise InvalidPatternError(repr(pattern), "pattern must be a string")
    try:
        return re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as exc:
        raise InvalidPatternError(pattern, str(exc)) from exc


def safe_search(pattern: object, text: object, *, ignore_case: bool = False) -> bool:
    """Test ``pattern`` against ``text``; invalid patterns never match."""

    compiled = compile_pattern(pattern, ignore_case=ignore_case)
    if compiled is None:
        return False
    return compiled.search(str(text)) is not None
