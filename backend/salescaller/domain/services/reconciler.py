"""
Webhook Reconciler
Authenticates provider callbacks and turns them into entity transitions
"""
import logging
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from salescaller.domain.exceptions import NotFoundError, ValidationError
from salescaller.domain.interfaces.call_provider import CallProvider
from salescaller.domain.interfaces.messaging_provider import MessagingProvider
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.domain.models.whatsapp import InboundMessage
from salescaller.domain.services.call_service import CallService
from salescaller.domain.services.payment_service import PaymentService
from salescaller.domain.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)


def _discarded(reason: str) -> Dict[str, Any]:
    return {"status": "discarded", "reason": reason}


def _ignored(reason: str) -> Dict[str, Any]:
    return {"status": "ignored", "reason": reason}


class WebhookReconciler:
    """
    One entry point per provider family.

    Every callback is authenticated before it is parsed; a
    WebhookAuthenticationError propagates (HTTP 403) and nothing is
    written. Malformed payloads are acknowledged as "discarded" and
    callbacks for unknown entities as "ignored", so providers stop
    retrying them.
    """

    def __init__(
        self,
        calls: CallService,
        call_provider: CallProvider,
        payments: PaymentService,
        payment_provider: PaymentProvider,
        messages: WhatsAppService,
        messaging_provider: MessagingProvider
    ):
        self.calls = calls
        self.call_provider = call_provider
        self.payments = payments
        self.payment_provider = payment_provider
        self.messages = messages
        self.messaging_provider = messaging_provider

    @staticmethod
    def _check_provider(requested: str, active_name: str, family: str) -> None:
        if requested.lower() != active_name.lower():
            raise NotFoundError(f"{family} provider '{requested}' is not active")

    async def handle_call_webhook(self, provider: str, request: WebhookRequest) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Provider in the URL is not the active call provider
            WebhookAuthenticationError: Signature missing or invalid
        """
        self._check_provider(provider, self.call_provider.name, "Call")
        self.call_provider.authenticate(request)

        try:
            event = self.call_provider.parse_callback(request)
        except (ValidationError, PydanticValidationError) as e:
            logger.warning(f"Discarding malformed {provider} call webhook: {e}")
            return _discarded(str(e))

        if event is None:
            return _ignored("event not tracked")
        return await self.calls.apply_call_event(event)

    async def handle_payment_webhook(self, provider: str, request: WebhookRequest) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Provider in the URL is not the active payment provider
            WebhookAuthenticationError: Callback is not genuine
        """
        self._check_provider(provider, self.payment_provider.name, "Payment")

        try:
            notification = await self.payment_provider.parse_webhook(request)
        except (ValidationError, PydanticValidationError) as e:
            logger.warning(f"Discarding malformed {provider} payment webhook: {e}")
            return _discarded(str(e))

        if notification is None:
            return _ignored("event not tracked")

        try:
            return await self.payments.handle_notification(notification)
        except NotFoundError as e:
            logger.warning(f"Payment webhook for unknown transaction: {e}")
            return _ignored(str(e))

    async def handle_whatsapp_webhook(self, request: WebhookRequest) -> Dict[str, Any]:
        """
        Raises:
            WebhookAuthenticationError: Signature missing or invalid
        """
        self.messaging_provider.authenticate(request)

        try:
            inbound = InboundMessage.model_validate(request.json())
        except (ValidationError, PydanticValidationError) as e:
            logger.warning(f"Discarding malformed WhatsApp webhook: {e}")
            return _discarded(str(e))

        return await self.messages.handle_inbound(inbound)
