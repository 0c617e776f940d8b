"""
API Dependencies
Services are built once by the composition root and read from app.state
"""
from fastapi import Depends, Request

from salescaller.container import Container
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.domain.services.call_service import CallService
from salescaller.domain.services.export_service import ExportService
from salescaller.domain.services.lead_service import LeadService
from salescaller.domain.services.order_service import OrderService
from salescaller.domain.services.payment_service import PaymentService
from salescaller.domain.services.queue_service import JobQueue
from salescaller.domain.services.reconciler import WebhookReconciler
from salescaller.domain.services.reports_service import ReportsService
from salescaller.domain.services.whatsapp_service import WhatsAppService


def get_container(request: Request) -> Container:
    """
    Get the application container.

    Raises:
        RuntimeError: If the app was started without its lifespan
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Application container is not initialized")
    return container


def get_lead_service(container: Container = Depends(get_container)) -> LeadService:
    return container.leads


def get_call_service(container: Container = Depends(get_container)) -> CallService:
    return container.calls


def get_order_service(container: Container = Depends(get_container)) -> OrderService:
    return container.orders


def get_payment_service(container: Container = Depends(get_container)) -> PaymentService:
    return container.payments


def get_whatsapp_service(container: Container = Depends(get_container)) -> WhatsAppService:
    return container.messages


def get_export_service(container: Container = Depends(get_container)) -> ExportService:
    return container.exports


def get_reports_service(container: Container = Depends(get_container)) -> ReportsService:
    return container.reports


def get_queue(container: Container = Depends(get_container)) -> JobQueue:
    return container.queue


def get_reconciler(container: Container = Depends(get_container)) -> WebhookReconciler:
    return container.reconciler


async def get_webhook_request(
    request: Request,
    container: Container = Depends(get_container)
) -> WebhookRequest:
    """
    Raw webhook as the signature schemes need it.

    The URL is rebuilt from APP_BASE_URL because Twilio signs the public
    callback URL, not the one the proxy forwarded to us.
    """
    body = await request.body()
    url = f"{container.settings.app_base_url.rstrip('/')}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return WebhookRequest(body=body, headers=dict(request.headers), url=url)
