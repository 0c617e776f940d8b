"""
Payment Service
Payment links, confirmation and the payment state machine
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from salescaller.domain.exceptions import ConflictError, NotFoundError, ProviderError
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.domain.interfaces.store import LEADS, ORDERS, PAYMENTS, Store
from salescaller.domain.models.lead import ActivityType
from salescaller.domain.models.order import OrderStatus
from salescaller.domain.models.payment import Payment, PaymentNotification, PaymentStatus
from salescaller.domain.services.activity import record_activity
from salescaller.domain.services.order_service import OrderService
from salescaller.domain.services.state_machines import ORDER_STATE_MACHINE, PAYMENT_STATE_MACHINE
from salescaller.domain.services.whatsapp_service import WhatsAppService
from salescaller.domain.services.whatsapp_templates import WhatsAppTemplateType

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Payments against orders.

    A Payment reaches COMPLETED once, guarded by compare-and-set, and
    only that transition moves its order to PAID. A repeated confirmation
    re-applies the order step (itself compare-and-set) and otherwise
    changes nothing.
    """

    def __init__(
        self,
        store: Store,
        provider: PaymentProvider,
        orders: OrderService,
        messages: WhatsAppService
    ):
        self.store = store
        self.provider = provider
        self.orders = orders
        self.messages = messages

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        payment = await self.store.get(PAYMENTS, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    # =========================================================================
    # Payment Links
    # =========================================================================

    async def create_payment_link(self, order_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a hosted payment page for an order and make it the order's
        active payment.

        Raises:
            NotFoundError: Unknown order or lead
            ConflictError: Order can no longer be paid
            ProviderError: Provider rejected the request (recorded on the timeline)
        """
        order = await self.orders.get_order(order_id)
        if not ORDER_STATE_MACHINE.can_transition(order["status"], OrderStatus.PAID.value):
            raise ConflictError(f"Order {order_id} is {order['status']} and cannot be paid")

        lead = await self.store.get(LEADS, order["lead_id"])
        if lead is None:
            raise NotFoundError(f"Lead {order['lead_id']} not found")

        try:
            link = await self.provider.create_payment(order, lead)
        except ProviderError as e:
            await record_activity(
                self.store, order["lead_id"], ActivityType.PAYMENT, "Payment Link Failed",
                content=str(e),
                metadata={"order_id": order_id, "provider": self.provider.name},
                user_id=user_id,
            )
            logger.error(f"Payment link for order {order_id} failed: {e}")
            raise

        payment = Payment(
            order_id=order_id,
            provider=self.provider.name,
            provider_txn_id=link.provider_txn_id,
            amount=order["total_amount"],
            currency=order.get("currency", "myr"),
            payment_url=link.payment_url,
            metadata=link.metadata,
        )
        record = await self.store.create(PAYMENTS, payment.to_record())

        await self.store.update(
            ORDERS,
            order_id,
            {"payment_link": link.payment_url, "active_payment_id": record["id"]}
        )
        await record_activity(
            self.store, order["lead_id"], ActivityType.PAYMENT, "Payment Link Created",
            content=link.payment_url,
            metadata={"order_id": order_id, "payment_id": record["id"], "provider": self.provider.name,
                      "amount": str(payment.amount)},
            user_id=user_id,
        )
        logger.info(f"Payment {record['id']} ({link.provider_txn_id}) created for order {order_id}")
        return record

    # =========================================================================
    # Confirmation
    # =========================================================================

    async def _find_by_txn(self, provider_txn_id: str) -> Dict[str, Any]:
        payment = await self.store.find_first(
            PAYMENTS,
            {"provider_txn_id": provider_txn_id, "provider": self.provider.name}
        )
        if payment is None:
            raise NotFoundError(f"No {self.provider.name} payment with transaction id {provider_txn_id}")
        return payment

    async def confirm_payment(self, provider_txn_id: str) -> Dict[str, Any]:
        """
        Apply a "paid" outcome.

        Returns:
            {"status": "processed" | "ignored", ...}

        Raises:
            NotFoundError: Unknown transaction id
        """
        payment = await self._find_by_txn(provider_txn_id)
        return await self._complete(payment)

    async def _complete(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.utcnow()
        completed = await self.store.update(
            PAYMENTS,
            payment["id"],
            {"status": PaymentStatus.COMPLETED.value, "paid_at": now},
            expected={"status": PAYMENT_STATE_MACHINE.sources_for(PaymentStatus.COMPLETED.value)}
        )
        if completed is None:
            payment = await self.store.get(PAYMENTS, payment["id"]) or payment
            if payment["status"] != PaymentStatus.COMPLETED.value:
                logger.info(f"Payment {payment['id']} already {payment['status']}; confirmation ignored")
                return {"status": "ignored", "reason": f"payment is {payment['status']}", "payment_id": payment["id"]}

        order = await self.store.get(ORDERS, payment["order_id"])
        if order is None:
            logger.warning(f"Payment {payment['id']} completed for missing order {payment['order_id']}")
            return {"status": "processed", "payment_id": payment["id"], "order_status": None}

        # A COMPLETED payment whose order is not PAID yet (an earlier confirmation
        # failed part-way) still moves the order; mark_paid is itself a CAS
        paid_order = await self.orders.mark_paid(order, payment_id=payment["id"])

        if completed is None and paid_order is None:
            logger.info(f"Payment {payment['id']} already COMPLETED; confirmation ignored")
            return {"status": "ignored", "reason": "payment is COMPLETED", "payment_id": payment["id"]}

        await record_activity(
            self.store, order["lead_id"], ActivityType.PAYMENT, "Payment Completed",
            metadata={
                "order_id": order["id"],
                "payment_id": payment["id"],
                "provider": payment["provider"],
                "provider_txn_id": payment["provider_txn_id"],
                "amount": str(payment["amount"]),
            },
        )

        if paid_order is None:
            logger.warning(f"Payment {payment['id']} completed but order {order['id']} is {order['status']}")
        else:
            await self._notify_paid(order)

        logger.info(f"Payment {payment['id']} completed for order {order['id']}")
        return {
            "status": "processed",
            "payment_id": payment["id"],
            "order_status": (paid_order or order)["status"],
        }

    async def _notify_paid(self, order: Dict[str, Any]) -> None:
        try:
            await self.messages.enqueue_message(
                order["lead_id"],
                template_name=WhatsAppTemplateType.PAYMENT_RECEIVED.value,
                order_id=order["id"],
            )
        except (ConflictError, NotFoundError) as e:
            logger.warning(f"Payment received message for order {order['id']} not queued: {e}")

    async def mark_payment_failed(self, provider_txn_id: str, error: Optional[str] = None) -> Dict[str, Any]:
        """Apply a terminal "failed" outcome. The order keeps its status."""
        payment = await self._find_by_txn(provider_txn_id)
        failed = await self.store.update(
            PAYMENTS,
            payment["id"],
            {"status": PaymentStatus.FAILED.value, "error": error or "Payment failed"},
            expected={"status": PAYMENT_STATE_MACHINE.sources_for(PaymentStatus.FAILED.value)}
        )
        if failed is None:
            return {"status": "ignored", "reason": f"payment is {payment['status']}", "payment_id": payment["id"]}

        order = await self.store.get(ORDERS, payment["order_id"])
        if order is not None:
            await record_activity(
                self.store, order["lead_id"], ActivityType.PAYMENT, "Payment Failed",
                content=error,
                metadata={"order_id": order["id"], "payment_id": payment["id"], "provider": payment["provider"]},
            )
        logger.info(f"Payment {payment['id']} failed")
        return {"status": "processed", "payment_id": payment["id"], "payment_status": PaymentStatus.FAILED.value}

    async def handle_notification(self, notification: PaymentNotification) -> Dict[str, Any]:
        """Route a normalized webhook to confirmation or failure."""
        if notification.paid:
            return await self.confirm_payment(notification.provider_txn_id)
        if notification.failed:
            return await self.mark_payment_failed(
                notification.provider_txn_id,
                str(notification.raw.get("type") or "Payment failed")
            )
        logger.info(f"Payment {notification.provider_txn_id} not paid yet; nothing to do")
        return {"status": "ignored", "reason": "not paid"}

    async def verify_payment(self, payment_id: str) -> Dict[str, Any]:
        """
        Poll the provider for a payment's outcome and apply it.

        Raises:
            NotFoundError: Unknown payment
            ConflictError: Payment belongs to a provider other than the active one
            ProviderError: Provider could not be reached
        """
        payment = await self.get_payment(payment_id)
        if payment["status"] != PaymentStatus.PENDING.value:
            return {"payment_id": payment_id, "paid": payment["status"] == PaymentStatus.COMPLETED.value,
                    "payment_status": payment["status"]}

        if payment["provider"] != self.provider.name:
            raise ConflictError(
                f"Payment {payment_id} was created with {payment['provider']}, "
                f"active provider is {self.provider.name}"
            )

        paid = await self.provider.verify_payment(payment["provider_txn_id"])
        if paid:
            await self._complete(payment)

        payment = await self.get_payment(payment_id)
        return {"payment_id": payment_id, "paid": paid, "payment_status": payment["status"]}
