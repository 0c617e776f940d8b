"""
Calls API Endpoints
Queue outbound AI calls and read call logs
"""
import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from salescaller.api.v1.dependencies import get_call_service
from salescaller.api.v1.endpoints.jobs import JobAccepted
from salescaller.domain.services.call_service import CallService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


class StartCallRequest(BaseModel):
    """Request to call a lead"""
    lead_id: str
    user_id: str
    call_type: str = "SALES"
    delay: float = Field(default=0, ge=0)


@router.post("", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def start_call(body: StartCallRequest, calls: CallService = Depends(get_call_service)):
    """
    Queue a call job.

    The call is placed by a worker on the calls lane; DNC leads are
    refused here with 409.
    """
    job = await calls.enqueue_call(body.lead_id, body.user_id, body.call_type, delay=body.delay)
    return JobAccepted.from_job(job)


@router.get("/{call_id}")
async def get_call(call_id: str, calls: CallService = Depends(get_call_service)):
    return await calls.get_call(call_id)
