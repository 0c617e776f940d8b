"""
Messaging Provider Factory
"""
from typing import Callable, Dict

from salescaller.core.config import Settings
from salescaller.domain.interfaces.messaging_provider import MessagingProvider
from salescaller.infrastructure.messaging.wasapbot import WasapbotMessagingProvider


def _build_wasapbot(settings: Settings) -> MessagingProvider:
    return WasapbotMessagingProvider(
        endpoint=settings.wasapbot_endpoint,
        api_key=settings.wasapbot_api_key,
        webhook_secret=settings.whatsapp_webhook_secret,
        timeout=settings.provider_timeout_seconds,
        simulate=settings.provider_mock_mode,
    )


class MessagingProviderFactory:
    """Factory for creating messaging provider instances"""

    _providers: Dict[str, Callable[[Settings], MessagingProvider]] = {
        "wasapbot": _build_wasapbot,
    }

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> MessagingProvider:
        """Create messaging provider instance"""
        provider_name = provider_name.lower()
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown messaging provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], MessagingProvider]) -> None:
        """Register a provider"""
        cls._providers[name.lower()] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())
