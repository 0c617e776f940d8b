"""
Payment Provider Factory
"""
from typing import Callable, Dict

from salescaller.core.config import Settings
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.infrastructure.payments.billplz import BillplzPaymentProvider
from salescaller.infrastructure.payments.stripe_provider import StripePaymentProvider
from salescaller.infrastructure.payments.toyyibpay import ToyyibPayPaymentProvider


def _callback_url(settings: Settings, provider: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}{settings.api_prefix}/webhooks/payments/{provider}"


def _build_stripe(settings: Settings) -> PaymentProvider:
    return StripePaymentProvider(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        app_base_url=settings.app_base_url,
        currency=settings.currency,
        simulate=settings.provider_mock_mode,
    )


def _build_billplz(settings: Settings) -> PaymentProvider:
    return BillplzPaymentProvider(
        secret_key=settings.billplz_secret_key,
        collection_id=settings.billplz_collection_id,
        x_signature_key=settings.billplz_x_signature_key,
        callback_url=_callback_url(settings, "billplz"),
        app_base_url=settings.app_base_url,
        sandbox=settings.billplz_sandbox,
        timeout=settings.provider_timeout_seconds,
        simulate=settings.provider_mock_mode,
    )


def _build_toyyibpay(settings: Settings) -> PaymentProvider:
    return ToyyibPayPaymentProvider(
        secret_key=settings.toyyibpay_secret_key,
        category_code=settings.toyyibpay_category_code,
        callback_url=_callback_url(settings, "toyyibpay"),
        app_base_url=settings.app_base_url,
        sandbox=settings.toyyibpay_sandbox,
        timeout=settings.provider_timeout_seconds,
        simulate=settings.provider_mock_mode,
    )


class PaymentProviderFactory:
    """Factory for creating payment provider instances"""

    _providers: Dict[str, Callable[[Settings], PaymentProvider]] = {
        "stripe": _build_stripe,
        "billplz": _build_billplz,
        "toyyibpay": _build_toyyibpay,
    }

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> PaymentProvider:
        """Create payment provider instance"""
        provider_name = provider_name.lower()
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown payment provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], PaymentProvider]) -> None:
        """Register a provider"""
        cls._providers[name.lower()] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())
