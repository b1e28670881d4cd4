from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from tariffgate.api.security import require_api_key
from tariffgate.api.services import get_compliance_checker
from tariffgate.compliance import ComplianceChecker, RestrictionType
from tariffgate.compliance.models import ComplianceCheckRequest
from tariffgate.serialization import to_jsonable

router = APIRouter(
    prefix="/api/compliance",
    tags=["compliance"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/check")
def check_compliance(
    request: ComplianceCheckRequest,
    checker: ComplianceChecker = Depends(get_compliance_checker),
) -> Dict[str, Any]:
    """Match restrictions for an HS code and route, and estimate duty and fees."""

    return to_jsonable(checker.check_compliance(request.to_check()))


@router.get("/restrictions/{restriction_type}")
def restrictions_of_type(
    restriction_type: RestrictionType,
    hs_code: str = Query(..., min_length=2),
    country: str = Query(..., min_length=1, max_length=3),
    checker: ComplianceChecker = Depends(get_compliance_checker),
) -> List[Dict[str, Any]]:
    """Active restrictions of one type applying to ``hs_code`` in ``country``."""

    matches = checker.check_specific_restriction(hs_code, country.upper(), restriction_type)
    return to_jsonable(matches)
