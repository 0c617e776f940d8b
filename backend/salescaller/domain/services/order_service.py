"""
Order Service
Order creation with price snapshots and the order lifecycle
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from salescaller.domain.exceptions import ConflictError, NotFoundError, ValidationError
from salescaller.domain.interfaces.store import LEADS, ORDERS, PRODUCTS, Store
from salescaller.domain.models.lead import ActivityType
from salescaller.domain.models.order import Order, OrderChannel, OrderItem, OrderStatus
from salescaller.domain.services.activity import record_activity
from salescaller.domain.services.state_machines import ORDER_STATE_MACHINE

logger = logging.getLogger(__name__)


class OrderService:
    """
    Orders and their items.

    PAID is never set through update_status: it follows a completed
    payment (PaymentService) or the WhatsApp "PAID" reply.
    """

    def __init__(self, store: Store, currency: str = "myr"):
        self.store = store
        self.currency = currency

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Unknown order id
        """
        order = await self.store.get(ORDERS, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def latest_order_for_lead(self, lead_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.find_first(ORDERS, {"lead_id": lead_id}, order_by="created_at", descending=True)

    async def list_orders(
        self,
        status: Optional[str] = None,
        lead_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """
        Orders newest first, optionally filtered.

        Raises:
            ValidationError: Unknown status
        """
        filters: Dict[str, Any] = {}
        if status:
            try:
                filters["status"] = OrderStatus(status.upper()).value
            except ValueError:
                raise ValidationError(f"Unknown order status: {status}")
        if lead_id:
            filters["lead_id"] = lead_id
        return await self.store.find_all(ORDERS, filters, order_by="created_at", descending=True, limit=limit)

    async def _build_items(self, items: List[Dict[str, Any]]) -> List[OrderItem]:
        """Snapshot current catalog prices into order lines."""
        if not items:
            raise ValidationError("An order needs at least one item")

        built = []
        for item in items:
            product_id = item.get("product_id") or item.get("productId")
            if not product_id:
                raise ValidationError("Order item is missing product_id")

            product = await self.store.get(PRODUCTS, product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            if not product.get("active", True):
                raise ValidationError(f"Product {product_id} is not active")

            try:
                built.append(OrderItem(
                    product_id=product_id,
                    product_name=product["name"],
                    quantity=item.get("quantity", 1),
                    unit_price=product["price"],
                ))
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid order item: {e.errors(include_url=False)}")
        return built

    async def create_order(
        self,
        lead_id: str,
        items: List[Dict[str, Any]],
        channel: str = OrderChannel.ONLINE.value,
        shipping_address: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a PENDING order for a lead.

        Args:
            lead_id: Owning lead
            items: [{"product_id", "quantity"}]
            channel: ONLINE or COD
            shipping_address: Delivery address
            user_id: Sales agent creating the order

        Raises:
            NotFoundError: Unknown lead or product
            ValidationError: No items, bad quantity or unknown channel
        """
        lead = await self.store.get(LEADS, lead_id)
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found")

        order_items = await self._build_items(items)
        try:
            order = Order(
                lead_id=lead_id,
                user_id=user_id,
                channel=channel,
                shipping_address=shipping_address,
                items=order_items,
                currency=self.currency,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid order: {e.errors(include_url=False)}")

        record = await self.store.create(ORDERS, order.to_record())
        await record_activity(
            self.store, lead_id, ActivityType.ORDER, "Order Created",
            content=order.product_summary,
            metadata={"order_id": record["id"], "order_no": order.order_no,
                      "total_amount": str(order.total_amount), "channel": order.channel},
            user_id=user_id,
        )
        logger.info(f"Created order {order.order_no} ({record['id']}) for lead {lead_id}")
        return record

    async def update_items(
        self,
        order_id: str,
        items: List[Dict[str, Any]],
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Replace the items of a PENDING order and recompute its total.

        Raises:
            ConflictError: Order is no longer PENDING
        """
        order = await self.get_order(order_id)
        if order["status"] != OrderStatus.PENDING.value:
            raise ConflictError(f"Order {order_id} is {order['status']}; items can only change while PENDING")

        order_items = await self._build_items(items)
        total = Order.compute_total(order_items)

        updated = await self.store.update(
            ORDERS,
            order_id,
            {
                "items": [item.model_dump(mode="json") for item in order_items],
                "total_amount": str(total),
            },
            expected={"status": OrderStatus.PENDING.value}
        )
        if updated is None:
            raise ConflictError(f"Order {order_id} changed while updating items")

        await record_activity(
            self.store, order["lead_id"], ActivityType.ORDER, "Order Updated",
            content=", ".join(f"{i.product_name} x{i.quantity}" for i in order_items),
            metadata={"order_id": order_id, "total_amount": str(total)},
            user_id=user_id,
        )
        return updated

    async def transition(
        self,
        order: Dict[str, Any],
        target: str,
        changes: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        log_activity: bool = True
    ) -> Optional[Dict[str, Any]]:
        """
        Compare-and-set an order to `target` from any state that allows it.

        Returns:
            The updated order, or None when the order is in a state that
            cannot reach `target` (including already being there)
        """
        target = getattr(target, "value", target)
        updated = await self.store.update(
            ORDERS,
            order["id"],
            {"status": target, **(changes or {})},
            expected={"status": ORDER_STATE_MACHINE.sources_for(target)}
        )
        if updated is None:
            return None

        if log_activity:
            await record_activity(
                self.store, order["lead_id"], ActivityType.ORDER,
                title or f"Order {target.replace('_', ' ').title()}",
                metadata={"order_id": order["id"], "from": order["status"], "to": target, **(metadata or {})},
                user_id=user_id,
            )
        logger.info(f"Order {order['id']} {order['status']} -> {target}")
        return updated

    async def update_status(
        self,
        order_id: str,
        status: str,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Move an order along its lifecycle (ship, deliver, cancel, refund).

        Raises:
            ValidationError: Unknown status
            ConflictError: Transition not allowed, or PAID requested directly
        """
        try:
            status = OrderStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")

        if status == OrderStatus.PAID.value:
            raise ConflictError("Orders become PAID through payment confirmation")

        order = await self.get_order(order_id)
        ORDER_STATE_MACHINE.assert_transition(order["status"], status)

        changes = {}
        if status == OrderStatus.CANCELLED.value:
            changes["active_payment_id"] = None
        updated = await self.transition(order, status, changes, user_id=user_id)
        if updated is None:
            raise ConflictError(f"Order {order_id} changed while updating status")
        return updated

    async def mark_paid(
        self,
        order: Dict[str, Any],
        payment_id: Optional[str] = None,
        log_activity: bool = False,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """PENDING|COD_CONFIRMED -> PAID; None when the order cannot become PAID."""
        changes: Dict[str, Any] = {"paid_at": datetime.utcnow()}
        if payment_id:
            changes["active_payment_id"] = payment_id
        return await self.transition(
            order, OrderStatus.PAID, changes,
            title="Order Marked Paid", metadata=metadata, log_activity=log_activity
        )
