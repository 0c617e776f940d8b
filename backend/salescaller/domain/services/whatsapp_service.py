"""
WhatsApp Service
Outbound message workflow and inbound keyword handling (COD / PAID)
"""
import logging
from typing import Any, Dict, Optional

from salescaller.domain.exceptions import ConflictError, NotFoundError, ValidationError
from salescaller.domain.interfaces.messaging_provider import MessagingProvider
from salescaller.domain.interfaces.store import LEADS, ORDERS, WHATSAPP_LOGS, Store
from salescaller.domain.models.job import Job, JobContext, JobOptions, JobType, Lane, MessageJobPayload, parse_payload
from salescaller.domain.models.lead import ActivityType, LeadStatus
from salescaller.domain.models.order import OrderStatus
from salescaller.domain.models.whatsapp import (
    InboundMessage,
    MessageDirection,
    MessageStatus,
    WhatsAppLog,
)
from salescaller.domain.services.activity import record_activity
from salescaller.domain.services.lead_service import LeadService
from salescaller.domain.services.order_service import OrderService
from salescaller.domain.services.queue_service import JobQueue
from salescaller.domain.services.whatsapp_templates import WhatsAppTemplateManager, WhatsAppTemplateType

logger = logging.getLogger(__name__)

PAYMENT_LINK_PLACEHOLDER = "[Payment link not available]"


class WhatsAppService:
    """
    WhatsApp messaging.

    Sends always go through the messaging lane. The send handler skips
    the provider when a SENT log already exists for the job, so a job
    redelivered after a crash does not message the lead twice.
    """

    def __init__(
        self,
        store: Store,
        queue: JobQueue,
        provider: MessagingProvider,
        leads: LeadService,
        orders: OrderService,
        templates: Optional[WhatsAppTemplateManager] = None
    ):
        self.store = store
        self.queue = queue
        self.provider = provider
        self.leads = leads
        self.orders = orders
        self.templates = templates or WhatsAppTemplateManager()

    # ===== Producer side =====

    async def enqueue_message(
        self,
        lead_id: str,
        message: Optional[str] = None,
        template_name: Optional[str] = None,
        template_data: Optional[Dict[str, Any]] = None,
        order_id: Optional[str] = None,
        delay: float = 0
    ) -> Job:
        """
        Queue a WhatsApp message to a lead.

        Raises:
            ValidationError: Neither message nor a known template given
            NotFoundError: Unknown lead
            ConflictError: Lead is DNC
        """
        if not message and not template_name:
            raise ValidationError("Either message or template_name is required")
        if template_name:
            self.templates.get_template(template_name)

        lead = await self.leads.get_lead(lead_id)
        if lead["status"] == LeadStatus.DNC.value:
            raise ConflictError(f"Lead {lead_id} is DNC and cannot be messaged")

        payload = MessageJobPayload(
            lead_id=lead_id,
            order_id=order_id,
            message=message,
            template_name=template_name,
            template_data=template_data or {},
        )
        return await self.queue.enqueue(
            Lane.MESSAGING,
            JobType.SEND_MESSAGE,
            payload.model_dump(by_alias=True, exclude_none=True),
            JobOptions(delay=delay)
        )

    async def send_order_confirmation(self, order_id: str) -> Job:
        """Queue the order confirmation message carrying the payment link."""
        order = await self.orders.get_order(order_id)
        return await self.enqueue_message(
            order["lead_id"],
            template_name=WhatsAppTemplateType.ORDER_CONFIRMATION.value,
            template_data={"payment_link": order.get("payment_link") or PAYMENT_LINK_PLACEHOLDER},
            order_id=order_id,
        )

    async def send_follow_up(self, lead_id: str, product: str) -> Job:
        return await self.enqueue_message(
            lead_id,
            template_name=WhatsAppTemplateType.FOLLOW_UP.value,
            template_data={"product": product},
        )

    # ===== Job handler =====

    async def _render(self, lead: Dict[str, Any], data: MessageJobPayload) -> str:
        if not data.template_name:
            if not data.message:
                raise ValidationError("Message job has neither message nor template")
            return data.message

        context: Dict[str, Any] = {"name": lead.get("name") or "customer"}
        if data.order_id:
            order = await self.store.get(ORDERS, data.order_id)
            if order is None:
                raise NotFoundError(f"Order {data.order_id} not found")
            context.update({
                "product": ", ".join(item["product_name"] for item in order.get("items", [])),
                "order_no": order.get("order_no"),
                "payment_link": order.get("payment_link") or PAYMENT_LINK_PLACEHOLDER,
            })
        context.update(data.template_data)
        return self.templates.render_template(data.template_name, **context)

    async def handle_message_job(self, payload: Dict[str, Any], context: JobContext) -> Dict[str, Any]:
        """
        Execute a send-message job.

        Raises:
            ValidationError: Malformed payload or template data
            NotFoundError: Lead or order no longer exists
            ConflictError: Lead is DNC
            ProviderError: Gateway rejected the message; the queue retries
        """
        data = parse_payload(MessageJobPayload, payload)

        lead = await self.store.get(LEADS, data.lead_id)
        if lead is None:
            raise NotFoundError(f"Lead {data.lead_id} not found")
        if lead["status"] == LeadStatus.DNC.value:
            raise ConflictError(f"Lead {data.lead_id} is DNC and cannot be messaged")

        sent = await self.store.find_first(
            WHATSAPP_LOGS,
            {"job_id": context.job_id, "status": MessageStatus.SENT.value}
        )
        if sent is not None:
            logger.info(f"Message for job {context.job_id} already sent: {sent['id']}")
            return {"whatsapp_log_id": sent["id"], "message_id": sent.get("message_id"), "deduplicated": True}

        text = await self._render(lead, data)

        try:
            result = await self.provider.send_message(
                lead["phone"], text, {"lead_id": data.lead_id, "job_id": context.job_id}
            )
        except Exception as e:
            log = WhatsAppLog(
                lead_id=data.lead_id,
                order_id=data.order_id,
                phone=lead["phone"],
                direction=MessageDirection.OUTBOUND,
                status=MessageStatus.FAILED,
                message=text,
                job_id=context.job_id,
                error=str(e),
                metadata={"attempt": context.attempt},
            )
            failed = await self.store.create(WHATSAPP_LOGS, log.to_record())
            await record_activity(
                self.store, data.lead_id, ActivityType.WHATSAPP, "WhatsApp Message Failed",
                content=text,
                metadata={"whatsapp_log_id": failed["id"], "status": MessageStatus.FAILED.value, "error": str(e)},
            )
            logger.error(f"Failed to send WhatsApp message to lead {data.lead_id}: {e}")
            raise

        log = WhatsAppLog(
            lead_id=data.lead_id,
            order_id=data.order_id,
            phone=lead["phone"],
            direction=MessageDirection.OUTBOUND,
            status=MessageStatus.SENT,
            message=text,
            message_id=result.message_id,
            job_id=context.job_id,
            metadata=result.to_dict(),
        )
        record = await self.store.create(WHATSAPP_LOGS, log.to_record())
        await record_activity(
            self.store, data.lead_id, ActivityType.WHATSAPP, "WhatsApp Message Sent",
            content=text,
            metadata={"whatsapp_log_id": record["id"], "status": MessageStatus.SENT.value,
                      "template": data.template_name},
        )
        logger.info(f"WhatsApp message sent to lead {data.lead_id}")
        return {"whatsapp_log_id": record["id"], "message_id": result.message_id}

    # ===== Inbound =====

    async def handle_inbound(self, inbound: InboundMessage) -> Dict[str, Any]:
        """
        Record an inbound message and act on exact keywords.

        "COD" confirms the lead's latest PENDING order for cash on delivery
        and queues the COD confirmation reply. "PAID" marks the latest
        order paid without a Payment record.

        Returns:
            {"status": "processed" | "ignored", "action": ...}
        """
        received_at = inbound.timestamp.isoformat()
        duplicate = await self.store.find_first(WHATSAPP_LOGS, {
            "direction": MessageDirection.INBOUND.value,
            "phone": inbound.phone,
            "received_at": received_at,
            "message": inbound.message,
        })
        if duplicate is not None:
            logger.info(f"Duplicate inbound WhatsApp message from {inbound.phone[:6]}...")
            return {"status": "ignored", "reason": "duplicate", "whatsapp_log_id": duplicate["id"]}

        lead = await self.leads.find_by_phone(inbound.phone)
        order = await self.orders.latest_order_for_lead(lead["id"]) if lead else None

        log = WhatsAppLog(
            lead_id=lead["id"] if lead else None,
            order_id=order["id"] if order else None,
            phone=inbound.phone,
            direction=MessageDirection.INBOUND,
            status=MessageStatus.DELIVERED,
            message=inbound.message,
            received_at=received_at,
        )
        record = await self.store.create(WHATSAPP_LOGS, log.to_record())

        if lead is None:
            logger.warning(f"Inbound WhatsApp message from unknown number {inbound.phone[:6]}...")
            return {"status": "processed", "whatsapp_log_id": record["id"], "action": None}

        await record_activity(
            self.store, lead["id"], ActivityType.WHATSAPP, "WhatsApp Message Received",
            content=inbound.message,
            metadata={"whatsapp_log_id": record["id"], "status": "RECEIVED"},
        )

        action = None
        if order is not None and inbound.keyword == "COD":
            action = await self._confirm_cod(lead, order)
        elif order is not None and inbound.keyword == "PAID":
            action = await self._mark_paid_by_reply(order)

        logger.info(f"Inbound WhatsApp message processed from {inbound.phone[:6]}... (action={action})")
        return {"status": "processed", "whatsapp_log_id": record["id"], "action": action}

    async def _confirm_cod(self, lead: Dict[str, Any], order: Dict[str, Any]) -> Optional[str]:
        updated = await self.orders.transition(
            order, OrderStatus.COD_CONFIRMED, {"channel": "COD"},
            title="COD Confirmed via WhatsApp"
        )
        if updated is None:
            logger.info(f"COD reply ignored: order {order['id']} is {order['status']}")
            return None

        if lead["status"] == LeadStatus.DNC.value:
            logger.warning(f"Lead {lead['id']} is DNC; COD confirmation not sent")
        else:
            await self.enqueue_message(
                lead["id"],
                template_name=WhatsAppTemplateType.COD_CONFIRMATION.value,
                order_id=order["id"],
            )
        return "cod_confirmed"

    async def _mark_paid_by_reply(self, order: Dict[str, Any]) -> Optional[str]:
        # Unverified: no Payment record backs this transition
        logger.warning(f"Order {order['id']} marked PAID from a WhatsApp reply without a payment")
        updated = await self.orders.mark_paid(
            order, log_activity=True, metadata={"source": "whatsapp", "verified": False}
        )
        return "marked_paid" if updated is not None else None
