"""
Stripe Payment Provider
Hosted Stripe Checkout sessions for one-off order payments
"""
import asyncio
import functools
import logging
import uuid
from typing import Any, Dict, Optional

import stripe

from salescaller.domain.exceptions import ProviderError, ValidationError, WebhookAuthenticationError
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.domain.models.order import to_minor_units
from salescaller.domain.models.payment import PaymentLink, PaymentNotification, PaymentProviderName
from salescaller.domain.models.webhook import WebhookRequest

logger = logging.getLogger(__name__)


class StripePaymentProvider(PaymentProvider):
    """
    Stripe Checkout in payment mode.

    The API key is passed per request instead of being set on the stripe
    module, so several providers (or tests) can coexist in one process.

    Supports mock mode when STRIPE_SECRET_KEY is not configured or
    PROVIDER_MOCK_MODE is true: links are fake and webhooks are accepted
    unsigned.
    """

    SUCCESS_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
    FAILURE_EVENTS = {"checkout.session.async_payment_failed"}

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        app_base_url: str = "http://localhost:8000",
        currency: str = "myr",
        simulate: bool = False
    ):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._app_base_url = app_base_url.rstrip("/")
        self._currency = currency
        self.mock_mode = simulate or not secret_key

        logger.info(f"StripePaymentProvider initialized (mock_mode={self.mock_mode})")

    @property
    def name(self) -> str:
        return PaymentProviderName.STRIPE.value

    async def _call(self, func, **kwargs):
        """Run a blocking stripe SDK call off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                functools.partial(func, api_key=self._secret_key, **kwargs)
            )
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"Stripe request failed: {message}")
            raise ProviderError(self.name, message)

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_payment(
        self,
        order: Dict[str, Any],
        lead: Dict[str, Any]
    ) -> PaymentLink:
        """
        Create a Stripe Checkout Session for an order.

        Returns:
            PaymentLink with the session URL and session id
        """
        order_id = order["id"]

        if self.mock_mode:
            session_id = f"cs_mock_{uuid.uuid4().hex[:16]}"
            return PaymentLink(
                payment_url=f"{self._app_base_url}/mock-checkout/{session_id}",
                provider_txn_id=session_id,
                metadata={"mock_mode": True}
            )

        line_items = [
            {
                "price_data": {
                    "currency": self._currency,
                    "product_data": {"name": item["product_name"]},
                    "unit_amount": to_minor_units(item["unit_price"]),
                },
                "quantity": item["quantity"],
            }
            for item in order.get("items", [])
        ]
        if not line_items:
            raise ValidationError(f"Order {order_id} has no items to charge")

        params = {
            "mode": "payment",
            "line_items": line_items,
            "client_reference_id": order_id,
            "metadata": {"order_id": order_id, "order_no": order.get("order_no", "")},
            "success_url": f"{self._app_base_url}/orders/{order_id}/status?payment=success",
            "cancel_url": f"{self._app_base_url}/orders/{order_id}/status?payment=cancelled",
        }
        if lead.get("email"):
            params["customer_email"] = lead["email"]

        session = await self._call(stripe.checkout.Session.create, **params)

        logger.info(f"Created Stripe checkout session {session.id} for order {order_id}")
        return PaymentLink(payment_url=session.url, provider_txn_id=session.id)

    async def verify_payment(self, provider_txn_id: str) -> bool:
        if self.mock_mode:
            logger.warning(f"Stripe mock mode - cannot verify {provider_txn_id}")
            return False

        session = await self._call(stripe.checkout.Session.retrieve, id=provider_txn_id)
        return session.payment_status == "paid"

    # =========================================================================
    # Webhook Handlers
    # =========================================================================

    async def parse_webhook(self, request: WebhookRequest) -> Optional[PaymentNotification]:
        """Verify the signed event envelope and normalize checkout events."""
        if self.mock_mode:
            event = request.json()
        else:
            if not self._webhook_secret:
                raise WebhookAuthenticationError("Stripe webhook secret not configured")
            signature = request.header("stripe-signature")
            if not signature:
                raise WebhookAuthenticationError("missing stripe signature header")
            try:
                event = stripe.Webhook.construct_event(request.body, signature, self._webhook_secret)
            except stripe.SignatureVerificationError as e:
                logger.error(f"Webhook signature verification failed: {e}")
                raise WebhookAuthenticationError("Invalid webhook signature")
            except ValueError as e:
                raise ValidationError(f"Invalid Stripe payload: {e}")

        try:
            event_type = event["type"]
            session = event["data"]["object"]
        except (KeyError, TypeError):
            raise ValidationError("Stripe event missing type or session object")
        if not isinstance(session, dict) or not isinstance(session.get("id"), str):
            raise ValidationError("Stripe event data.object is not a session object")
        session_id = session["id"]

        logger.info(f"Processing Stripe webhook event: {event_type}")

        if event_type in self.SUCCESS_EVENTS:
            if session.get("payment_status") != "paid":
                # Delayed payment methods complete the session before funds arrive
                return None
            return PaymentNotification(provider_txn_id=session_id, paid=True, raw={"type": event_type})

        if event_type in self.FAILURE_EVENTS:
            return PaymentNotification(
                provider_txn_id=session_id,
                paid=False,
                failed=True,
                raw={"type": event_type}
            )

        return None
