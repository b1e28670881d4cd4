"""Administrative CRUD over the rule, threshold and restriction registries.

Every mutation goes through the owning registry, so it bumps the registry
version and (for restrictions) clears the compliance cache before the
response is returned.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query

from tariffgate.api.security import require_api_key
from tariffgate.api.services import get_compliance_checker, get_rule_engine, get_threshold_router
from tariffgate.classification import RuleEngine, ThresholdRouter
from tariffgate.classification.models import (
    RuleModel,
    RuleTestRequest,
    RuleUpdateModel,
    ThresholdModel,
    ThresholdUpdateModel,
)
from tariffgate.compliance import ComplianceChecker
from tariffgate.compliance.models import RestrictionModel, RestrictionUpdateModel
from tariffgate.errors import DuplicateEntryError, InvalidPatternError
from tariffgate.observability import log_event
from tariffgate.serialization import to_jsonable

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_api_key)],
)

T = TypeVar("T")


def _mutate(kind: str, action: Callable[[], T]) -> T:
    """Run a registry mutation, mapping validation failures onto HTTP errors."""

    try:
        return action()
    except InvalidPatternError as exc:
        raise HTTPException(
            status_code=422,
            detail={"error": "INVALID_PATTERN", "pattern": exc.pattern, "message": str(exc)},
        ) from exc
    except DuplicateEntryError as exc:
        raise HTTPException(status_code=409, detail={"error": "DUPLICATE_ID", "message": str(exc)}) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"error": f"INVALID_{kind.upper()}", "message": str(exc)}) from exc


def _not_found(kind: str, entry_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind.capitalize()} {entry_id} not found")


def _require(entry: Optional[T], kind: str, entry_id: str) -> T:
    if entry is None:
        raise _not_found(kind, entry_id)
    return entry


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@router.get("/rules")
def list_rules(engine: RuleEngine = Depends(get_rule_engine)) -> List[Dict[str, Any]]:
    return to_jsonable(engine.get_rules())


@router.get("/rules/{rule_id}")
def get_rule(rule_id: str, engine: RuleEngine = Depends(get_rule_engine)) -> Dict[str, Any]:
    return to_jsonable(_require(engine.registry.get(rule_id), "rule", rule_id))


@router.post("/rules", status_code=201)
def create_rule(payload: RuleModel, engine: RuleEngine = Depends(get_rule_engine)) -> Dict[str, Any]:
    rule_id = _mutate("rule", lambda: engine.add_rule(payload.to_entity()))
    log_event("admin.rule.created", rule_id=rule_id)
    return {"id": rule_id, "version": engine.registry.version}


@router.patch("/rules/{rule_id}")
def update_rule(
    rule_id: str, payload: RuleUpdateModel, engine: RuleEngine = Depends(get_rule_engine)
) -> Dict[str, Any]:
    if not _mutate("rule", lambda: engine.update_rule(rule_id, **payload.to_changes())):
        raise _not_found("rule", rule_id)
    log_event("admin.rule.updated", rule_id=rule_id)
    return to_jsonable(engine.registry.get(rule_id))


@router.delete("/rules/{rule_id}", status_code=204)
def delete_rule(rule_id: str, engine: RuleEngine = Depends(get_rule_engine)) -> None:
    if not engine.delete_rule(rule_id):
        raise _not_found("rule", rule_id)
    log_event("admin.rule.deleted", rule_id=rule_id)


@router.post("/rules/{rule_id}/test")
def test_rule(
    rule_id: str, payload: RuleTestRequest, engine: RuleEngine = Depends(get_rule_engine)
) -> Dict[str, Any]:
    """Dry-run a single rule against a sample product."""

    try:
        matches, actions, elapsed_ms = engine.test_rule(rule_id, payload.context.to_context())
    except KeyError as exc:
        raise _not_found("rule", rule_id) from exc
    return {"matches": matches, "applied_actions": to_jsonable(actions), "execution_time_ms": elapsed_ms}


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------


@router.get("/thresholds")
def list_thresholds(
    category: Optional[str] = Query(default=None),
    threshold_router: ThresholdRouter = Depends(get_threshold_router),
) -> List[Dict[str, Any]]:
    return to_jsonable(threshold_router.get_thresholds(category))


@router.get("/thresholds/gaps")
def threshold_gaps(
    category: Optional[str] = Query(default=None),
    threshold_router: ThresholdRouter = Depends(get_threshold_router),
) -> Dict[str, Any]:
    """Score ranges that no unconditional band routes."""

    gaps = threshold_router.coverage_gaps(category)
    return {"category": category, "gaps": [{"above": low, "below": high} for low, high in gaps]}


@router.get("/thresholds/{threshold_id}")
def get_threshold(
    threshold_id: str, threshold_router: ThresholdRouter = Depends(get_threshold_router)
) -> Dict[str, Any]:
    return to_jsonable(_require(threshold_router.registry.get(threshold_id), "threshold", threshold_id))


@router.post("/thresholds", status_code=201)
def create_threshold(
    payload: ThresholdModel, threshold_router: ThresholdRouter = Depends(get_threshold_router)
) -> Dict[str, Any]:
    threshold_id = _mutate("threshold", lambda: threshold_router.add_threshold(payload.to_entity()))
    log_event("admin.threshold.created", threshold_id=threshold_id)
    return {"id": threshold_id, "version": threshold_router.registry.version}


@router.patch("/thresholds/{threshold_id}")
def update_threshold(
    threshold_id: str,
    payload: ThresholdUpdateModel,
    threshold_router: ThresholdRouter = Depends(get_threshold_router),
) -> Dict[str, Any]:
    if not _mutate("threshold", lambda: threshold_router.update_threshold(threshold_id, **payload.to_changes())):
        raise _not_found("threshold", threshold_id)
    log_event("admin.threshold.updated", threshold_id=threshold_id)
    return to_jsonable(threshold_router.registry.get(threshold_id))


@router.delete("/thresholds/{threshold_id}", status_code=204)
def delete_threshold(
    threshold_id: str, threshold_router: ThresholdRouter = Depends(get_threshold_router)
) -> None:
    if not threshold_router.delete_threshold(threshold_id):
        raise _not_found("threshold", threshold_id)
    log_event("admin.threshold.deleted", threshold_id=threshold_id)


# ---------------------------------------------------------------------------
# Restrictions
# ---------------------------------------------------------------------------


@router.get("/restrictions")
def list_restrictions(
    country: Optional[str] = Query(default=None, max_length=3),
    checker: ComplianceChecker = Depends(get_compliance_checker),
) -> List[Dict[str, Any]]:
    return to_jsonable(checker.get_restrictions(country.upper() if country else None))


@router.get("/restrictions/{restriction_id}")
def get_restriction(
    restriction_id: str, checker: ComplianceChecker = Depends(get_compliance_checker)
) -> Dict[str, Any]:
    return to_jsonable(_require(checker.registry.get(restriction_id), "restriction", restriction_id))


@router.post("/restrictions", status_code=201)
def create_restriction(
    payload: RestrictionModel, checker: ComplianceChecker = Depends(get_compliance_checker)
) -> Dict[str, Any]:
    restriction_id = _mutate("restriction", lambda: checker.add_restriction(payload.to_entity()))
    log_event("admin.restriction.created", restriction_id=restriction_id)
    return {"id": restriction_id, "version": checker.registry.version}


@router.patch("/restrictions/{restriction_id}")
def update_restriction(
    restriction_id: str,
    payload: RestrictionUpdateModel,
    checker: ComplianceChecker = Depends(get_compliance_checker),
) -> Dict[str, Any]:
    if not _mutate("restriction", lambda: checker.update_restriction(restriction_id, **payload.to_changes())):
        raise _not_found("restriction", restriction_id)
    log_event("admin.restriction.updated", restriction_id=restriction_id)
    return to_jsonable(checker.registry.get(restriction_id))


@router.delete("/restrictions/{restriction_id}", status_code=204)
def delete_restriction(
    restriction_id: str, checker: ComplianceChecker = Depends(get_compliance_checker)
) -> None:
    if not checker.delete_restriction(restriction_id):
        raise _not_found("restriction", restriction_id)
    log_event("admin.restriction.deleted", restriction_id=restriction_id)
