from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from tariffgate.api.security import require_api_key
from tariffgate.api.services import get_orchestrator
from tariffgate.classification import ClassificationOrchestrator
from tariffgate.classification.jobs import job_manager
from tariffgate.classification.models import (
    BatchClassificationRequest,
    BatchSubmitResponse,
    ClassificationRequestModel,
    JobStatusResponse,
)
from tariffgate.serialization import to_jsonable

router = APIRouter(
    prefix="/api/classification",
    tags=["classification"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/classify")
def classify(
    request: ClassificationRequestModel,
    orchestrator: ClassificationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Run the full decision pipeline for one product."""

    return to_jsonable(orchestrator.classify(request.to_context()))


@router.post("/batch", response_model=BatchSubmitResponse)
def submit_batch(
    request: BatchClassificationRequest,
    background_tasks: BackgroundTasks,
    orchestrator: ClassificationOrchestrator = Depends(get_orchestrator),
) -> BatchSubmitResponse:
    """Queue a batch of products; poll ``/batch/{job_id}`` for the outcome."""

    contexts = [item.to_context() for item in request.items]
    job = job_manager.create_job("classification_batch", total_items=len(contexts))

    def runner() -> Dict[str, Any]:
        return to_jsonable(orchestrator.classify_batch(contexts))

    background_tasks.add_task(job_manager.run_job, job, runner)
    return BatchSubmitResponse(
        job_id=job.id,
        status=job.status,
        total_items=len(contexts),
        message=f"Classification queued for {len(contexts)} item(s)",
    )


@router.get("/batch/{job_id}", response_model=JobStatusResponse)
def get_batch(job_id: str) -> JobStatusResponse:
    job = job_manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(
        job_id=job.id,
        status=job.status,
        total_items=job.total_items,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
        run_id=job.run_id,
        result=job.result,
        error=job.error,
    )
