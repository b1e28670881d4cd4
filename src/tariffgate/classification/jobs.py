from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from tariffgate.observability import current_run_id, log_event, run_scope


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    type: str
    total_items: int = 0
    status: str = "queued"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    run_id: Optional[str] = None

    def mark_running(self) -> None:
        self.status = "running"
        self.updated_at = _utcnow()

    def mark_completed(self, result: Dict[str, Any]) -> None:
        self.status = "completed"
        self.result = result
        self.updated_at = _utcnow()

    def mark_failed(self, message: str) -> None:
        self.status = "failed"
        self.error = message
        self.updated_at = _utcnow()


class JobManager:
    """In-memory registry for background batch classification jobs."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create_job(self, job_type: str, total_items: int = 0) -> Job:
        job = Job(id=f"job_{uuid4().hex[:12]}", type=job_type, total_items=total_items, run_id=current_run_id())
        with self._lock:
            self._jobs[job.id] = job
        log_event("job.created", job_id=job.id, job_type=job.type, total_items=total_items)
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def run_job(self, job: Job, runner: Callable[[], Dict[str, Any]]) -> None:
        # Items spawned by the runner record this run id as their parent.
        with run_scope(job.run_id) as run_id:
            with self._lock:
                job.run_id = run_id
                job.mark_running()
            log_event("job.started", job_id=job.id, job_type=job.type)
            try:
                result = runner()
            except Exception as exc:  # pragma: no cover - batch runner isolates item failures itself
                with self._lock:
                    job.mark_failed(str(exc))
                log_event("job.failed", level=logging.ERROR, job_id=job.id, error=str(exc))
                return
            with self._lock:
                job.mark_completed(result)
            log_event("job.completed", job_id=job.id)

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()


job_manager = JobManager()
