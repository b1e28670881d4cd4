"""Duty and customs-fee calculation from declarative lookup tables.

Three tables drive everything here, all loaded from ``data/duty_schedule.json``:

  base_rates        destination -> HS chapter -> ad-valorem percent
  additional_duties (hs prefix, origin, destination) -> extra percent
  fees              destination -> list of value-based fee formulas

A destination without a base-rate table gets no duty estimate at all, while a
known destination with an unlisted chapter is treated as duty free.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from tariffgate.compliance.types import (
    AdditionalDuty,
    AdditionalDutyType,
    AdditionalFee,
    ComplianceCheck,
    DutyCalculation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdditionalDutyRule:
    hs_prefix: str
    origin: str
    destination: str
    type: AdditionalDutyType
    rate: float
    description: str

    def applies(self, hs_digits: str, origin: str, destination: str) -> bool:
        if not hs_digits.startswith(self.hs_prefix):
            return False
        if self.origin != "*" and self.origin != origin:
            return False
        return self.destination == "*" or self.destination == destination


@dataclass(frozen=True)
class FeeRule:
    type: str
    rate: float
    description: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def amount(self, value: float) -> float:
        raw = value * self.rate
        if self.minimum is not None:
            raw = max(raw, self.minimum)
        if self.maximum is not None:
            raw = min(raw, self.maximum)
        return raw


def _default_data_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "duty_schedule.json"


def _normalize_hts(code: str) -> str:
    return "".join(ch for ch in str(code) if ch.isdigit())


def _normalize_country(code: str | None) -> str:
    return (code or "").strip().upper()


class DutySchedule:
    """Read-only duty, additional-duty and fee tables."""

    def __init__(
        self,
        base_rates: Mapping[str, Mapping[str, float]],
        additional_duties: Tuple[AdditionalDutyRule, ...] = (),
        fees: Mapping[str, Tuple[FeeRule, ...]] | None = None,
        currencies: Mapping[str, str] | None = None,
        default_currency: str = "USD",
        quote_validity_days: int = 30,
    ) -> None:
        self._base_rates = {
            _normalize_country(country): {str(ch).zfill(2): float(rate) for ch, rate in rates.items()}
            for country, rates in base_rates.items()
        }
        self._additional = tuple(additional_duties)
        self._fees = {_normalize_country(k): tuple(v) for k, v in (fees or {}).items()}
        self._currencies = {_normalize_country(k): v for k, v in (currencies or {}).items()}
        self.default_currency = default_currency
        self.quote_validity_days = quote_validity_days

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "DutySchedule":
        data_path = Path(path) if path else _default_data_path()
        payload = json.loads(data_path.read_text(encoding="utf-8"))
        return cls.from_payload(payload)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DutySchedule":
        additional = tuple(
            AdditionalDutyRule(
                hs_prefix=_normalize_hts(entry["hs_prefix"]),
                origin=_normalize_country(entry.get("origin", "*")),
                destination=_normalize_country(entry.get("destination", "*")),
                type=AdditionalDutyType(entry["type"]),
                rate=float(entry["rate"]),
                description=str(entry.get("description", "")),
            )
            for entry in payload.get("additional_duties", [])
        )
        fees = {
            country: tuple(
                FeeRule(
                    type=str(item["type"]),
                    rate=float(item["rate"]),
                    description=str(item.get("description", "")),
                    minimum=item.get("minimum"),
                    maximum=item.get("maximum"),
                )
                for item in items
            )
            for country, items in payload.get("fees", {}).items()
        }
        return cls(
            base_rates=payload.get("base_rates", {}),
            additional_duties=additional,
            fees=fees,
            currencies=payload.get("currencies", {}),
            default_currency=str(payload.get("default_currency", "USD")),
            quote_validity_days=int(payload.get("quote_validity_days", 30)),
        )

    def has_country(self, country: str) -> bool:
        return _normalize_country(country) in self._base_rates

    def base_rate(self, country: str, chapter: str) -> float:
        return self._base_rates.get(_normalize_country(country), {}).get(chapter, 0.0)

    def additional_duties(self, hs_code: str, origin: str, destination: str) -> List[AdditionalDuty]:
        hs_digits = _normalize_hts(hs_code)
        origin_norm = _normalize_country(origin)
        dest_norm = _normalize_country(destination)
        return [
            AdditionalDuty(type=rule.type, rate=rule.rate, description=rule.description)
            for rule in self._additional
            if rule.applies(hs_digits, origin_norm, dest_norm)
        ]

    def fee_rules(self, country: str) -> Tuple[FeeRule, ...]:
        return self._fees.get(_normalize_country(country), ())

    def currency(self, country: str) -> str:
        return self._currencies.get(_normalize_country(country), self.default_currency)


def calculate_duty(
    check: ComplianceCheck,
    schedule: DutySchedule,
    *,
    now: datetime | None = None,
) -> Optional[DutyCalculation]:
    """Estimate duty for ``check``; ``None`` without a value or a known destination."""

    if not check.product_value or not schedule.has_country(check.destination_country):
        return None

    now = now or datetime.now(timezone.utc)
    base_rate = schedule.base_rate(check.destination_country, check.chapter)
    additional = schedule.additional_duties(
        check.hs_code, check.origin_country, check.destination_country
    )
    total_rate = base_rate + sum(duty.rate for duty in additional)
    logger.debug(
        "Duty for %s -> %s: base %.2f%% + %d additional = %.2f%%",
        check.hs_code, check.destination_country, base_rate, len(additional), total_rate,
    )
    return DutyCalculation(
        base_rate=base_rate,
        additional_duties=tuple(additional),
        total_rate=total_rate,
        estimated_amount=check.product_value * total_rate / 100.0,
        currency=schedule.currency(check.destination_country),
        calculation_date=now,
        valid_until=now + timedelta(days=schedule.quote_validity_days),
    )


def calculate_fees(check: ComplianceCheck, schedule: DutySchedule) -> List[AdditionalFee]:
    """Value-based customs fees (MPF/HMF for the US seed table)."""

    if not check.product_value:
        return []
    return [
        AdditionalFee(type=rule.type, amount=rule.amount(check.product_value), description=rule.description)
        for rule in schedule.fee_rules(check.destination_country)
    ]


@lru_cache(maxsize=1)
def get_duty_schedule(data_path: str | None = None) -> DutySchedule:
    return DutySchedule.from_file(data_path)
