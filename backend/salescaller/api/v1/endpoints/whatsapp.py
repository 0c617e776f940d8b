"""
WhatsApp API Endpoints
Queue outbound messages and list the available templates
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from salescaller.api.v1.dependencies import get_whatsapp_service
from salescaller.api.v1.endpoints.jobs import JobAccepted
from salescaller.domain.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


class SendMessageRequest(BaseModel):
    """Either message or template_name is required"""
    lead_id: str
    message: Optional[str] = None
    template_name: Optional[str] = None
    template_data: Dict[str, Any] = {}
    order_id: Optional[str] = None


@router.post("/send", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    body: SendMessageRequest,
    messages: WhatsAppService = Depends(get_whatsapp_service)
):
    job = await messages.enqueue_message(
        body.lead_id,
        message=body.message,
        template_name=body.template_name,
        template_data=body.template_data,
        order_id=body.order_id,
    )
    return JobAccepted.from_job(job)


@router.get("/templates")
async def list_templates(messages: WhatsAppService = Depends(get_whatsapp_service)):
    return {"templates": messages.templates.list_templates()}
