"""
Orders API Endpoints
Orders, their lifecycle, payment links and confirmation messages
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from salescaller.api.v1.dependencies import get_order_service, get_payment_service, get_whatsapp_service
from salescaller.api.v1.endpoints.jobs import JobAccepted
from salescaller.domain.services.order_service import OrderService
from salescaller.domain.services.payment_service import PaymentService
from salescaller.domain.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


# ============================================
# Request/Response Models
# ============================================

class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)


class CreateOrderRequest(BaseModel):
    lead_id: str
    items: List[OrderItemRequest]
    channel: str = "ONLINE"
    shipping_address: Optional[str] = None
    user_id: Optional[str] = None


class UpdateItemsRequest(BaseModel):
    items: List[OrderItemRequest]
    user_id: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: str
    user_id: Optional[str] = None


class PaymentLinkRequest(BaseModel):
    user_id: Optional[str] = None


# ============================================
# Endpoints
# ============================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(body: CreateOrderRequest, orders: OrderService = Depends(get_order_service)):
    """Create a PENDING order with prices snapshotted from the catalog."""
    return await orders.create_order(
        body.lead_id,
        [item.model_dump() for item in body.items],
        channel=body.channel,
        shipping_address=body.shipping_address,
        user_id=body.user_id,
    )


@router.get("")
async def list_orders(
    status: Optional[str] = Query(None, description="Filter by order status"),
    lead_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    orders: OrderService = Depends(get_order_service)
):
    """Orders, newest first."""
    return {"orders": await orders.list_orders(status=status, lead_id=lead_id, limit=limit)}


@router.get("/{order_id}")
async def get_order(order_id: str, orders: OrderService = Depends(get_order_service)):
    return await orders.get_order(order_id)


@router.put("/{order_id}/items")
async def update_items(
    order_id: str,
    body: UpdateItemsRequest,
    orders: OrderService = Depends(get_order_service)
):
    """Replace the items of a PENDING order; the total is recomputed."""
    return await orders.update_items(order_id, [item.model_dump() for item in body.items], user_id=body.user_id)


@router.post("/{order_id}/status")
async def update_status(
    order_id: str,
    body: OrderStatusRequest,
    orders: OrderService = Depends(get_order_service)
):
    return await orders.update_status(order_id, body.status, user_id=body.user_id)


@router.post("/{order_id}/payment-link", status_code=status.HTTP_201_CREATED)
async def create_payment_link(
    order_id: str,
    body: Optional[PaymentLinkRequest] = None,
    payments: PaymentService = Depends(get_payment_service)
):
    """
    Create a hosted payment page with the active payment provider.

    A provider failure returns 502 and is recorded on the lead timeline.
    """
    body = body or PaymentLinkRequest()
    return await payments.create_payment_link(order_id, user_id=body.user_id)


@router.post("/{order_id}/confirmation", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def send_confirmation(
    order_id: str,
    messages: WhatsAppService = Depends(get_whatsapp_service)
):
    """Queue the WhatsApp order confirmation carrying the payment link."""
    job = await messages.send_order_confirmation(order_id)
    return JobAccepted.from_job(job)
