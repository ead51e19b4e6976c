"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Database (flat id -> payment record table)
    database_url: str = "sqlite:///./payments.db"

    # Server
    rest_api_port: int = 3000
    # Comma-separated list of allowed origins (empty uses default localhost list)
    allowed_origins: str = ""

    # Mercado Pago
    mercadopago_access_token: str = ""
    mercadopago_api_url: str = "https://api.mercadopago.com"
    # Abort startup in production when the token is rejected by /users/me
    mercadopago_validate_token_on_startup: bool = True
    # Domain for synthesized payer emails (firstname.phone@domain)
    mercadopago_fake_email_domain: str = "seudominio.com"

    # Processor calls
    processor_timeout_seconds: float = 5.0
    processor_fetch_attempts: int = 3
    processor_fetch_initial_delay: float = 1.0

    # Webhook
    webhook_secret: str = ""
    # strict: reject any signature mismatch
    # permissive: tolerate mismatches on non-live payloads (sandbox only, never in production)
    webhook_signature_mode: Literal["strict", "permissive"] = "strict"
    webhook_processing_deadline_seconds: float = 10.0

    # Fulfillment (kitchen printer webhook)
    print_webhook_url: str = ""
    fulfillment_timeout_seconds: float = 8.0

    # Simulated payments
    allow_dev_pix_endpoint: bool = False
    enable_local_pix_fallback: bool = False
    dev_auto_approve_seconds: int = 0  # 0 = disabled

    # Rate limiting
    rate_limit_enabled: bool = True
    create_payment_rate_limit: str = "10/minute"

    # WebSocket
    ws_max_total_connections: int = 1000
    ws_max_message_size: int = 64 * 1024  # 64 KB

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def uses_test_token(self) -> bool:
        """Mercado Pago sandbox tokens start with TEST-."""
        return self.mercadopago_access_token.startswith("TEST-")

    @property
    def effective_signature_mode(self) -> str:
        """Production deployments always verify signatures strictly."""
        if self.is_production:
            return "strict"
        return self.webhook_signature_mode

    @property
    def dev_endpoints_enabled(self) -> bool:
        return not self.is_production or self.allow_dev_pix_endpoint

    def validate_production_secrets(self) -> list[str]:
        """
        Validate that secrets are properly configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.is_production:
            if not self.mercadopago_access_token:
                errors.append("MERCADOPAGO_ACCESS_TOKEN must be set in production")
            elif self.uses_test_token:
                errors.append(
                    "MERCADOPAGO_ACCESS_TOKEN is a TEST- token; production needs live credentials"
                )

            if not self.webhook_secret:
                errors.append("WEBHOOK_SECRET must be set in production")

            if self.webhook_signature_mode != "strict":
                errors.append(
                    "WEBHOOK_SIGNATURE_MODE=permissive is ignored in production; set it to strict"
                )

            if self.debug:
                errors.append("DEBUG must be False in production")

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

DATABASE_URL = settings.database_url
