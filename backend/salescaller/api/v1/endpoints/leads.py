"""
Leads API Endpoints
Lead creation, timeline, status, do-not-contact and callbacks
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from salescaller.api.v1.dependencies import get_lead_service
from salescaller.api.v1.endpoints.jobs import JobAccepted
from salescaller.domain.services.lead_service import LeadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"])


# ============================================
# Request/Response Models
# ============================================

class CreateLeadRequest(BaseModel):
    phone: str
    name: str = ""
    email: Optional[str] = None
    priority: int = 0
    source: Optional[str] = None
    tags: List[str] = []
    assigned_to: Optional[str] = None


class DncRequest(BaseModel):
    reason: Optional[str] = None
    user_id: Optional[str] = None


class CallbackRequest(BaseModel):
    """Schedule a follow-up call"""
    user_id: str
    delay_seconds: float = Field(ge=0)
    call_type: str = "SALES"
    note: Optional[str] = None


class CallbackResponse(BaseModel):
    lead: Dict[str, Any]
    job: JobAccepted


class StatusRequest(BaseModel):
    status: str
    user_id: Optional[str] = None
    reason: Optional[str] = None


# ============================================
# Endpoints
# ============================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_lead(body: CreateLeadRequest, leads: LeadService = Depends(get_lead_service)):
    """Create a lead. A second lead with the same phone returns 409."""
    return await leads.create_lead(body.model_dump(exclude_none=True))


@router.get("")
async def list_leads(
    status: Optional[str] = Query(None, description="Filter by lead status"),
    source: Optional[str] = None,
    assigned_to: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    leads: LeadService = Depends(get_lead_service)
):
    """Leads, newest first."""
    return {"leads": await leads.list_leads(status=status, source=source, assigned_to=assigned_to, limit=limit)}


@router.get("/{lead_id}")
async def get_lead(lead_id: str, leads: LeadService = Depends(get_lead_service)):
    return await leads.get_lead(lead_id)


@router.get("/{lead_id}/timeline")
async def get_timeline(
    lead_id: str,
    limit: Optional[int] = None,
    leads: LeadService = Depends(get_lead_service)
):
    """Lead activities, newest first."""
    return await leads.timeline(lead_id, limit=limit)


@router.post("/{lead_id}/dnc")
async def mark_dnc(
    lead_id: str,
    body: Optional[DncRequest] = None,
    leads: LeadService = Depends(get_lead_service)
):
    body = body or DncRequest()
    return await leads.mark_dnc(lead_id, reason=body.reason, user_id=body.user_id)


@router.post("/{lead_id}/callback", response_model=CallbackResponse, status_code=status.HTTP_202_ACCEPTED)
async def schedule_callback(
    lead_id: str,
    body: CallbackRequest,
    leads: LeadService = Depends(get_lead_service)
):
    result = await leads.schedule_callback(
        lead_id,
        user_id=body.user_id,
        delay_seconds=body.delay_seconds,
        call_type=body.call_type,
        note=body.note,
    )
    return CallbackResponse(lead=result["lead"], job=JobAccepted.from_job(result["job"]))


@router.post("/{lead_id}/status")
async def update_status(
    lead_id: str,
    body: StatusRequest,
    leads: LeadService = Depends(get_lead_service)
):
    return await leads.update_status(lead_id, body.status, user_id=body.user_id, reason=body.reason)
