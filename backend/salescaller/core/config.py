"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]
    app_base_url: str = "http://localhost:8000"

    # Redis/Queue
    redis_url: str = "redis://localhost:6379"
    run_workers: bool = False

    # Persistent store ("memory" or "supabase")
    store_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Providers
    provider_mock_mode: bool = False
    provider_timeout_seconds: float = 30.0
    currency: str = "myr"

    retell_api_key: Optional[str] = None
    retell_agent_id: str = "sales-agent-bm"
    retell_from_number: Optional[str] = None
    retell_webhook_secret: Optional[str] = None

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    twilio_twiml_url: Optional[str] = None

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    billplz_secret_key: Optional[str] = None
    billplz_collection_id: Optional[str] = None
    billplz_x_signature_key: Optional[str] = None
    billplz_sandbox: bool = False

    toyyibpay_secret_key: Optional[str] = None
    toyyibpay_category_code: Optional[str] = None
    toyyibpay_sandbox: bool = False

    wasapbot_endpoint: Optional[str] = None
    wasapbot_api_key: Optional[str] = None
    whatsapp_webhook_secret: Optional[str] = None

    # Exports
    export_dir: str = "./exports"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*))?\}$")


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        # Load default config if exists
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        # Load environment-specific config
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        # Load provider config
        providers_path = self.config_dir / "providers.yaml"
        if providers_path.exists():
            providers_config = self._load_yaml(providers_path)
            self._deep_merge(self._config, providers_config)

        # Substitute environment variables
        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} and ${VAR_NAME:-default} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str):
                match = _ENV_PATTERN.match(value)
                if match:
                    env_var, default = match.groups()
                    config[key] = os.getenv(env_var, default if default is not None else value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("providers.payment.active") -> "stripe"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_active_provider(self, provider_type: str) -> str:
        """Get the name of the active provider for a family (calling, payment, messaging)"""
        active = self.get(f"providers.{provider_type}.active")
        if not active:
            raise ValueError(f"No active {provider_type} provider configured")
        return str(active).lower()

    def get_provider_config(self, provider_type: str) -> Dict:
        """Get active provider configuration"""
        active = self.get_active_provider(provider_type)
        return self.get(f"providers.{provider_type}.{active}", {}) or {}

    def get_lane_config(self, lane: str) -> Dict:
        """Get queue settings for a lane (concurrency, timeout, attempts, backoff)"""
        return self.get(f"queue.lanes.{lane}", {}) or {}
