from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from tariffgate.api.security import require_api_key
from tariffgate.api.services import get_confidence_assessor, get_threshold_router
from tariffgate.classification import ConfidenceAssessor, ThresholdRouter
from tariffgate.classification.models import ConfidenceAssessRequest, ThresholdEvaluateRequest
from tariffgate.serialization import to_jsonable

router = APIRouter(
    prefix="/api/confidence",
    tags=["confidence"],
    dependencies=[Depends(require_api_key)],
)


class CalibrationSampleRequest(BaseModel):
    predicted_confidence: float = Field(ge=0.0, le=100.0)
    actual_accuracy: float = Field(ge=0.0, le=100.0)
    category: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


@router.post("/assess")
def assess(
    request: ConfidenceAssessRequest,
    assessor: ConfidenceAssessor = Depends(get_confidence_assessor),
) -> Dict[str, Any]:
    assessment = assessor.assess_confidence(
        request.ai_confidence,
        request.validation_score,
        request.business_rule_score,
        request.to_context(),
    )
    return to_jsonable(assessment)


@router.post("/thresholds/evaluate")
def evaluate_thresholds(
    request: ThresholdEvaluateRequest,
    threshold_router: ThresholdRouter = Depends(get_threshold_router),
) -> List[Dict[str, Any]]:
    return to_jsonable(threshold_router.evaluate_thresholds(request.final_score, request.context))


@router.post("/calibration", status_code=204)
def record_calibration(
    request: CalibrationSampleRequest,
    assessor: ConfidenceAssessor = Depends(get_confidence_assessor),
) -> None:
    assessor.update_calibration(request.predicted_confidence, request.actual_accuracy, request.category)


@router.get("/calibration")
def calibration_metrics(
    category: Optional[str] = Query(default=None),
    assessor: ConfidenceAssessor = Depends(get_confidence_assessor),
) -> Dict[str, Any]:
    return to_jsonable(assessor.get_calibration_metrics(category))
