"""
Wasapbot Messaging Provider
WhatsApp text messages through a Wasapbot gateway endpoint
"""
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from salescaller.domain.interfaces.messaging_provider import MessagingProvider
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.domain.models.whatsapp import MessageResult
from salescaller.infrastructure.http import json_body, provider_request
from salescaller.infrastructure.signatures import require_hmac_signature
from salescaller.utils.phone import digits_only

logger = logging.getLogger(__name__)


class WasapbotMessagingProvider(MessagingProvider):
    """
    Wasapbot gateway.

    Requirements:
    - WASAPBOT_ENDPOINT (full send URL)
    - WASAPBOT_API_KEY (Bearer token)

    Inbound webhooks are signed with WHATSAPP_WEBHOOK_SECRET when it is set.
    """

    SIGNATURE_HEADERS = ["x-hub-signature-256", "x-webhook-signature", "x-wasapbot-signature"]

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: float = 30.0,
        simulate: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._endpoint = endpoint
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._transport = transport
        self.simulate = simulate or not (endpoint and api_key)

        if self.simulate:
            logger.warning("Wasapbot not configured - WhatsApp messages will be simulated")

    @property
    def name(self) -> str:
        return "wasapbot"

    async def send_message(
        self,
        phone: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> MessageResult:
        """
        Send a WhatsApp text message.

        Args:
            phone: Recipient number in any format
            message: Text body
            metadata: Not sent; kept for parity with other providers

        Returns:
            MessageResult with the gateway message id
        """
        number = digits_only(phone)

        if self.simulate:
            message_id = f"sim-wa-{uuid.uuid4().hex[:12]}"
            logger.warning(f"Simulating WhatsApp message to {number[:6]}... ({message_id})")
            return MessageResult(success=True, message_id=message_id, provider=self.name,
                                 raw={"simulated": True})

        response = await provider_request(
            self.name,
            "POST",
            self._endpoint,
            timeout=self._timeout,
            transport=self._transport,
            json={"phone": number, "message": message},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        data = json_body(self.name, response)
        if not isinstance(data, dict):
            data = {"response": data}

        message_id = data.get("messageId") or data.get("message_id") or data.get("id")
        logger.info(f"WhatsApp message sent to {number[:6]}... (id={message_id})")
        return MessageResult(success=True, message_id=message_id, provider=self.name, raw=data)

    def authenticate(self, request: WebhookRequest) -> None:
        require_hmac_signature(request, self._webhook_secret, self.SIGNATURE_HEADERS, "whatsapp")
