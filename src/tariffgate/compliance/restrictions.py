"""Trade restriction registry and seed data loading."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

from tariffgate.compliance.types import RestrictionSeverity, RestrictionType, TradeRestriction
from tariffgate.patterns import require_pattern
from tariffgate.registry import VersionedRegistry


def _default_data_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "restrictions.json"


def _normalize_country(code: str) -> str:
    code = code.strip()
    return code if code == "*" else code.upper()


def parse_date(value: Any) -> Optional[datetime]:
    """Coerce ISO strings, dates and naive datetimes to aware UTC datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def restriction_from_dict(entry: Mapping[str, Any]) -> TradeRestriction:
    effective = parse_date(entry.get("effective_date"))
    if effective is None:
        raise ValueError(f"Restriction {entry.get('id')!r} is missing effective_date")
    return TradeRestriction(
        id=str(entry.get("id", "")),
        country=_normalize_country(str(entry["country"])),
        hs_code_pattern=str(entry["hs_code_pattern"]),
        restriction_type=RestrictionType(entry["restriction_type"]),
        description=str(entry.get("description", "")),
        severity=RestrictionSeverity(entry["severity"]),
        effective_date=effective,
        requirements=tuple(str(item) for item in entry.get("requirements", [])),
        expiry_date=parse_date(entry.get("expiry_date")),
        authority=str(entry.get("authority", "")),
        origin_countries=tuple(_normalize_country(c) for c in entry.get("origin_countries", [])),
        exemptions=tuple(str(item) for item in entry.get("exemptions", [])),
        reference_url=entry.get("reference_url"),
    )


def load_restrictions(path: str | Path | None = None) -> List[TradeRestriction]:
    data_path = Path(path) if path else _default_data_path()
    payload = json.loads(data_path.read_text(encoding="utf-8"))
    return [restriction_from_dict(entry) for entry in payload.get("restrictions", [])]


def validate_restriction(restriction: TradeRestriction) -> None:
    require_pattern(restriction.hs_code_pattern)
    if restriction.expiry_date is not None and restriction.expiry_date <= restriction.effective_date:
        raise ValueError(f"Restriction {restriction.id!r} expires before it takes effect")


def is_active(restriction: TradeRestriction, now: datetime) -> bool:
    """Active on the half-open interval [effective_date, expiry_date)."""

    if now < restriction.effective_date:
        return False
    if restriction.expiry_date is not None and now >= restriction.expiry_date:
        return False
    return True


class RestrictionRegistry(VersionedRegistry[TradeRestriction]):
    id_prefix = "restriction"

    def __init__(self, restrictions: Iterable[TradeRestriction] | None = None) -> None:
        seed = load_restrictions() if restrictions is None else restrictions
        super().__init__(seed, validate=validate_restriction)

    def for_country(self, country: str) -> List[TradeRestriction]:
        country_norm = _normalize_country(country)
        return [r for r in self.list() if r.country in (country_norm, "*")]
