"""Command-line interface for tariffgate."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Tuple

import click

from ..classification import (
    AssessmentContext,
    ClassificationOrchestrator,
    ConfidenceAssessor,
    HttpJsonSource,
    ProductContext,
    RuleEngine,
    ThresholdRouter,
    configure_sources,
)
from ..compliance import ComplianceCheck, ComplianceChecker
from ..config import get_settings
from ..serialization import to_jsonable


def _emit(payload: Any) -> None:
    click.echo(json.dumps(to_jsonable(payload), indent=2))


@click.group()
@click.option("--verbose", is_flag=True, help="Log pipeline events to stderr.")
def cli(verbose: bool) -> None:
    """tariffgate command suite."""

    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@cli.command("classify")
@click.option("--description", required=True, help="Free-text product description.")
@click.option("--name", "product_name", default=None, help="Product name.")
@click.option("--category", default=None, help="Product category, e.g. Electronics.")
@click.option("--origin", default=None, help="Origin country code.")
@click.option("--destination", default=None, help="Destination country code.")
@click.option("--value", type=float, default=None, help="Declared value.")
@click.option("--material", "materials", multiple=True, help="Material; repeat for several.")
@click.option(
    "--source",
    "sources",
    multiple=True,
    help="Classification endpoint as name=url; defaults to TGATE_SOURCE_ENDPOINTS.",
)
def classify(
    description: str,
    product_name: Optional[str],
    category: Optional[str],
    origin: Optional[str],
    destination: Optional[str],
    value: Optional[float],
    materials: Tuple[str, ...],
    sources: Tuple[str, ...],
) -> None:
    """Run the full classification pipeline for one product."""

    settings = get_settings()
    endpoints = list(settings.source_endpoints)
    for raw in sources:
        name, sep, url = raw.partition("=")
        if not sep or not name or not url:
            raise click.BadParameter(f"expected name=url, got {raw!r}", param_hint="--source")
        endpoints.append((name, url))
    if not endpoints:
        raise click.UsageError("No classification sources configured; pass --source or set TGATE_SOURCE_ENDPOINTS")

    orchestrator = ClassificationOrchestrator(
        configure_sources(
            {
                name: HttpJsonSource(name=name, url=url, timeout=settings.source_timeout_seconds)
                for name, url in endpoints
            }
        ),
        settings=settings,
    )
    request = ProductContext(
        product_description=description,
        product_name=product_name,
        product_category=category,
        origin_country=origin.upper() if origin else None,
        destination_country=destination.upper() if destination else None,
        value=value,
        materials=materials,
    )
    _emit(orchestrator.classify(request))


@cli.group()
def compliance() -> None:
    """Trade-compliance helpers."""


@compliance.command("check")
@click.option("--hs-code", required=True, help="HS code to check.")
@click.option("--origin", required=True, help="Origin country code.")
@click.option("--destination", required=True, help="Destination country code.")
@click.option("--value", type=float, default=None, help="Declared value for duty estimation.")
def compliance_check(hs_code: str, origin: str, destination: str, value: Optional[float]) -> None:
    """Match restrictions and estimate duty for an HS code and route."""

    check = ComplianceCheck(
        hs_code=hs_code.strip(),
        origin_country=origin.upper(),
        destination_country=destination.upper(),
        product_value=value,
    )
    _emit(ComplianceChecker().check_compliance(check))


@cli.group()
def confidence() -> None:
    """Confidence fusion helpers."""


@confidence.command("assess")
@click.option("--ai", "ai_confidence", type=float, required=True, help="AI model confidence (0-100).")
@click.option("--validation", "validation_score", type=float, required=True, help="Validation score (0-100).")
@click.option("--rules", "rule_score", type=float, required=True, help="Business-rule score (0-100).")
@click.option("--description", default=None, help="Product description used for clarity factors.")
@click.option("--category", default=None, help="Product category.")
@click.option("--missing", "missing_fields", multiple=True, help="Missing field name; repeat for several.")
@click.option("--route", is_flag=True, help="Also route the final score through the confidence thresholds.")
def confidence_assess(
    ai_confidence: float,
    validation_score: float,
    rule_score: float,
    description: Optional[str],
    category: Optional[str],
    missing_fields: Tuple[str, ...],
    route: bool,
) -> None:
    """Fuse component scores into a final confidence."""

    assessment = ConfidenceAssessor().assess_confidence(
        ai_confidence,
        validation_score,
        rule_score,
        AssessmentContext(product_description=description, category=category, missing_fields=missing_fields),
    )
    if not route:
        _emit(assessment)
        return
    results = ThresholdRouter().evaluate_thresholds(assessment.final_score, {"category": category})
    _emit({"assessment": assessment, "thresholds": results})


@cli.group()
def rules() -> None:
    """Business-rule registry."""


@rules.command("list")
def rules_list() -> None:
    """Print the seeded business rules."""

    _emit(RuleEngine().get_rules())


@cli.group()
def thresholds() -> None:
    """Confidence threshold registry."""


@thresholds.command("list")
@click.option("--category", default=None, help="Only thresholds applicable to this category.")
def thresholds_list(category: Optional[str]) -> None:
    """Print the seeded confidence thresholds."""

    _emit(ThresholdRouter().get_thresholds(category))


@cli.group()
def restrictions() -> None:
    """Trade restriction registry."""


@restrictions.command("list")
@click.option("--country", default=None, help="Destination country code; wildcard entries are included.")
def restrictions_list(country: Optional[str]) -> None:
    """Print the seeded trade restrictions."""

    _emit(ComplianceChecker().get_restrictions(country.upper() if country else None))


if __name__ == "__main__":
    cli()
