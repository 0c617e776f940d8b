"""
Call Provider Interface
Abstract base class for AI outbound calling providers
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from salescaller.domain.models.call import CallEvent, CallInitiation
from salescaller.domain.models.webhook import WebhookRequest


class CallProvider(ABC):
    """Abstract base class for call providers"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name as stored on CallLog.provider (e.g. RETELL)"""
        pass

    @abstractmethod
    async def initiate_call(
        self,
        lead: Dict[str, Any],
        agent_context: Dict[str, Any]
    ) -> CallInitiation:
        """
        Place an outbound call.

        Args:
            lead: Lead record (phone, name, ...)
            agent_context: call_log_id, user_id, call_type and anything the
                agent persona needs

        Returns:
            CallInitiation with the provider call id

        Raises:
            ProviderError: Provider rejected the request or timed out
        """
        pass

    @abstractmethod
    def authenticate(self, request: WebhookRequest) -> None:
        """
        Check a callback is genuine.

        Raises:
            WebhookAuthenticationError: Signature missing or invalid
        """
        pass

    @abstractmethod
    def parse_callback(self, request: WebhookRequest) -> Optional[CallEvent]:
        """
        Translate a provider callback into the shared event vocabulary.

        Returns:
            CallEvent, or None for events outside started/ended/failed

        Raises:
            ValidationError: Payload is malformed
        """
        pass

    async def cleanup(self) -> None:
        """Release resources"""
        return None
