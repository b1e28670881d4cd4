"""JSON-friendly rendering of pipeline dataclasses."""

from __future__ import annotations

import math
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping

# Read-only properties worth surfacing alongside dataclass fields.
_DERIVED = {
    "ComplianceResult": ("estimated_duty_rate",),
    "BatchOutcome": ("success_count", "error_count"),
    "ValidationReport": ("is_valid",),
}


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        payload: Dict[str, Any] = {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
        for name in _DERIVED.get(type(value).__name__, ()):
            payload[name] = to_jsonable(getattr(value, name))
        return payload
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float) and math.isinf(value):
        return None
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return value
