"""
Webhooks API Endpoints
Call status, payment and inbound WhatsApp callbacks from providers

Every handler answers 200 with an acknowledgement body once the
callback is authentic, including when it was ignored or discarded,
so providers do not keep redelivering it. Forged callbacks get 403.
"""
import logging

from fastapi import APIRouter, Depends

from salescaller.api.v1.dependencies import get_reconciler, get_webhook_request
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.domain.services.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/calls/{provider}")
async def call_webhook(
    provider: str,
    webhook: WebhookRequest = Depends(get_webhook_request),
    reconciler: WebhookReconciler = Depends(get_reconciler)
):
    """Retell / Twilio call status callback."""
    result = await reconciler.handle_call_webhook(provider, webhook)
    logger.info(f"Call webhook ({provider}): {result['status']}")
    return result


@router.post("/payments/{provider}")
async def payment_webhook(
    provider: str,
    webhook: WebhookRequest = Depends(get_webhook_request),
    reconciler: WebhookReconciler = Depends(get_reconciler)
):
    """Stripe / Billplz / toyyibPay payment callback."""
    result = await reconciler.handle_payment_webhook(provider, webhook)
    logger.info(f"Payment webhook ({provider}): {result['status']}")
    return result


@router.post("/whatsapp")
async def whatsapp_webhook(
    webhook: WebhookRequest = Depends(get_webhook_request),
    reconciler: WebhookReconciler = Depends(get_reconciler)
):
    """Inbound WhatsApp message from the gateway."""
    return await reconciler.handle_whatsapp_webhook(webhook)
