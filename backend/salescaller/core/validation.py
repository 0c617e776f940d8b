"""
Provider Validation Module
Validates the selected provider configurations on startup
"""
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

from salescaller.core.config import ConfigManager, Settings

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class ProviderValidator:
    """
    Validates provider configurations at startup.

    Only the providers selected in config (providers.<family>.active)
    are checked, so an unused payment gateway never blocks startup.
    """

    # Required settings by provider name
    REQUIRED_SETTINGS: Dict[str, List[Tuple[str, str]]] = {
        "retell": [("retell_api_key", "Retell AI calling")],
        "twilio": [
            ("twilio_account_sid", "Twilio calling"),
            ("twilio_auth_token", "Twilio calling"),
            ("twilio_phone_number", "Twilio caller ID"),
            ("twilio_twiml_url", "Twilio call instructions URL"),
        ],
        "stripe": [
            ("stripe_secret_key", "Stripe payments"),
            ("stripe_webhook_secret", "Stripe webhook signing"),
        ],
        "billplz": [
            ("billplz_secret_key", "Billplz payments"),
            ("billplz_collection_id", "Billplz collection"),
            ("billplz_x_signature_key", "Billplz callback signing"),
        ],
        "toyyibpay": [
            ("toyyibpay_secret_key", "toyyibPay payments"),
            ("toyyibpay_category_code", "toyyibPay category"),
        ],
        "wasapbot": [
            ("wasapbot_endpoint", "Wasapbot WhatsApp"),
            ("wasapbot_api_key", "Wasapbot WhatsApp"),
        ],
        "supabase": [
            ("supabase_url", "Supabase database"),
            ("supabase_service_key", "Supabase database"),
        ],
    }

    # Optional but recommended
    OPTIONAL_SETTINGS: Dict[str, List[Tuple[str, str]]] = {
        "retell": [
            ("retell_from_number", "Retell caller ID"),
            ("retell_webhook_secret", "Retell webhook signing"),
        ],
        "wasapbot": [("whatsapp_webhook_secret", "WhatsApp inbound webhook signing")],
    }

    def __init__(self, settings: Settings, config: ConfigManager, strict: bool = False):
        """
        Initialize validator.

        Args:
            settings: Environment settings holding credentials
            config: Config manager holding provider selection
            strict: If True, treat warnings as errors
        """
        self.settings = settings
        self.config = config
        self.strict = strict
        self.results: List[ValidationResult] = []

    def selected_providers(self) -> List[str]:
        """Providers that will actually be constructed at startup."""
        providers = [
            self.config.get_active_provider("calling"),
            self.config.get_active_provider("payment"),
            self.config.get_active_provider("messaging"),
        ]
        if self.settings.store_backend == "supabase":
            providers.append("supabase")
        return providers

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all selected provider configurations.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        for provider in self.selected_providers():
            if provider not in self.REQUIRED_SETTINGS:
                self._add_error(provider, "providers", f"Unknown provider '{provider}' selected")
                continue

            for setting, description in self.REQUIRED_SETTINGS[provider]:
                if not getattr(self.settings, setting, None):
                    self._add_error(provider, setting,
                        f"{description} requires {setting.upper()} to be set")
                else:
                    self._add_success(provider, setting, f"{description} configured")

            for setting, description in self.OPTIONAL_SETTINGS.get(provider, []):
                if not getattr(self.settings, setting, None):
                    self._add_warning(provider, setting, f"{description} not configured (optional)")
                else:
                    self._add_success(provider, setting, f"{description} configured")

        if self.settings.provider_mock_mode:
            self._add_warning(
                "providers", "provider_mock_mode",
                "PROVIDER_MOCK_MODE is on: provider calls are simulated and webhook signatures are not checked"
            )

        errors = [r for r in self.results if not r.is_valid]
        return len(errors) == 0, self.results

    def _add_success(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(provider, setting, True, message))

    def _add_error(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(provider, setting, False, message))

    def _add_warning(self, provider: str, setting: str, message: str):
        """Add warning validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        errors = [r for r in self.results if not r.is_valid]
        warnings = [r for r in self.results if r.is_valid and "WARNING" in r.message]
        successes = [r for r in self.results if r.is_valid and "WARNING" not in r.message]

        if successes:
            logger.info("Provider configuration validated:")
            for r in successes:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

        for r in warnings:
            logger.warning(f"  ⚠ [{r.provider}] {r.message}")

        if errors:
            logger.error("Provider configuration errors:")
            for r in errors:
                logger.error(f"  ✗ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Provider configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_providers_on_startup(
    settings: Settings,
    config: ConfigManager,
    strict: bool = False
) -> None:
    """
    Validate the selected providers at startup.

    Args:
        settings: Environment settings
        config: Config manager with provider selection
        strict: If True, fail on warnings too

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ProviderValidator(settings, config, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All provider configurations validated successfully")
