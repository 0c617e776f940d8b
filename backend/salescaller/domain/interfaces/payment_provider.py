"""
Payment Provider Interface
Abstract base class for hosted payment page providers
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from salescaller.domain.models.payment import PaymentLink, PaymentNotification
from salescaller.domain.models.webhook import WebhookRequest


class PaymentProvider(ABC):
    """Abstract base class for payment providers"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name as stored on Payment.provider (e.g. STRIPE)"""
        pass

    @abstractmethod
    async def create_payment(
        self,
        order: Dict[str, Any],
        lead: Dict[str, Any]
    ) -> PaymentLink:
        """
        Create a hosted payment page for an order.

        The amount is sent in minor units (sen/cents) and the callback
        carries the order id so the webhook can be correlated.

        Raises:
            ProviderError: Provider rejected the request or timed out
        """
        pass

    @abstractmethod
    async def verify_payment(self, provider_txn_id: str) -> bool:
        """
        Ask the provider whether a transaction is paid.

        Raises:
            ProviderError: Provider could not be reached
        """
        pass

    @abstractmethod
    async def parse_webhook(self, request: WebhookRequest) -> Optional[PaymentNotification]:
        """
        Authenticate and normalize a payment callback.

        Returns:
            PaymentNotification, or None for events that carry no payment outcome

        Raises:
            WebhookAuthenticationError: Callback is not genuine
            ValidationError: Payload is malformed
        """
        pass

    async def cleanup(self) -> None:
        """Release resources"""
        return None
