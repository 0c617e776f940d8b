"""
Messaging Provider Interface
Abstract base class for WhatsApp gateways
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from salescaller.domain.models.whatsapp import MessageResult
from salescaller.domain.models.webhook import WebhookRequest


class MessagingProvider(ABC):
    """
    Abstract base class for WhatsApp providers.

    All providers must implement:
    - send_message(): Send a single text message
    - authenticate(): Verify an inbound webhook
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def send_message(
        self,
        phone: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> MessageResult:
        """
        Send a WhatsApp text message.

        Raises:
            ProviderError: Gateway rejected the request or timed out
        """
        pass

    @abstractmethod
    def authenticate(self, request: WebhookRequest) -> None:
        """
        Raises:
            WebhookAuthenticationError: Inbound webhook is not genuine
        """
        pass

    async def cleanup(self) -> None:
        return None
