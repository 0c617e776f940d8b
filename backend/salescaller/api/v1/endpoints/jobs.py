"""
Jobs API Endpoints
Export requests and queue inspection / cancellation
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from salescaller.api.v1.dependencies import get_export_service, get_queue
from salescaller.domain.exceptions import NotFoundError, ValidationError
from salescaller.domain.models.job import Job, Lane
from salescaller.domain.services.export_service import ExportService
from salescaller.domain.services.queue_service import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"])


# ============================================
# Request/Response Models
# ============================================

class JobAccepted(BaseModel):
    """Job queued for asynchronous execution"""
    job_id: str
    lane: str
    job_type: str
    status: str
    run_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobAccepted":
        return cls(
            job_id=job.job_id,
            lane=job.lane,
            job_type=job.job_type,
            status=job.status,
            run_at=job.run_at,
        )


class ExportRequest(BaseModel):
    """Request to export leads, calls or orders"""
    type: str
    filters: Dict[str, Any] = {}
    user_id: str
    format: str = "CSV"


def _lane(lane: str) -> str:
    try:
        return Lane(lane).value
    except ValueError:
        raise ValidationError(f"Unknown queue lane: {lane}")


# ============================================
# Endpoints
# ============================================

@router.post("/exports", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_export(
    body: ExportRequest,
    exports: ExportService = Depends(get_export_service)
):
    """Queue an export. Poll GET /jobs/{job_id} for the artifact location."""
    job = await exports.enqueue_export(body.type, body.filters, body.user_id, body.format)
    return JobAccepted.from_job(job)


@router.get("/jobs/{lane}/stats")
async def get_lane_stats(lane: str, queue: JobQueue = Depends(get_queue)):
    """Waiting, active, completed, failed and delayed counts of a lane."""
    lane = _lane(lane)
    return {"lane": lane, **await queue.get_queue_stats(lane)}


@router.get("/jobs/{lane}/failed", response_model=List[Job])
async def list_failed_jobs(lane: str, limit: int = 50, queue: JobQueue = Depends(get_queue)):
    return await queue.list_failed(_lane(lane), limit=limit)


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    job = await queue.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


@router.delete("/jobs/{job_id}", response_model=Job)
async def cancel_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    """Cancel a job that has not started. Active and finished jobs return 409."""
    return await queue.cancel(job_id)
