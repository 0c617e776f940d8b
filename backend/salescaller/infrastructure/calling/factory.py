"""
Call Provider Factory
"""
from typing import Callable, Dict

from salescaller.core.config import Settings
from salescaller.domain.interfaces.call_provider import CallProvider
from salescaller.infrastructure.calling.retell import RetellCallProvider
from salescaller.infrastructure.calling.twilio import TwilioCallProvider


def _build_retell(settings: Settings) -> CallProvider:
    return RetellCallProvider(
        api_key=settings.retell_api_key,
        agent_id=settings.retell_agent_id,
        from_number=settings.retell_from_number,
        webhook_secret=settings.retell_webhook_secret,
        timeout=settings.provider_timeout_seconds,
        simulate=settings.provider_mock_mode,
    )


def _build_twilio(settings: Settings) -> CallProvider:
    base_url = settings.app_base_url.rstrip("/")
    return TwilioCallProvider(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_phone_number,
        twiml_url=settings.twilio_twiml_url,
        status_callback_url=f"{base_url}{settings.api_prefix}/webhooks/calls/twilio",
        timeout=settings.provider_timeout_seconds,
        simulate=settings.provider_mock_mode,
    )


class CallProviderFactory:
    """Factory for creating call provider instances"""

    _providers: Dict[str, Callable[[Settings], CallProvider]] = {
        "retell": _build_retell,
        "twilio": _build_twilio,
    }

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> CallProvider:
        """Create call provider instance"""
        provider_name = provider_name.lower()
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown call provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], CallProvider]) -> None:
        """Register a provider"""
        cls._providers[name.lower()] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())
