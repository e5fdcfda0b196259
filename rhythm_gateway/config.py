"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Rhythm90 Gateway API"
    api_version: str = "0.1.0"
    api_description: str = "Billing entitlements and public API gateway for Rhythm90"
    app_url: str = "https://rhythm90.io"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "rhythm90-gateway"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_price_id_monthly: str = ""
    stripe_price_id_yearly: str = ""
    stripe_timeout_seconds: float = 10.0
    stripe_signature_tolerance_seconds: int = 300

    # Gateway limits
    free_daily_request_limit: int = 1000
    premium_daily_request_limit: int = 10000
    max_payload_bytes: int = 100 * 1024
    max_webhook_payload_bytes: int = 512 * 1024
    # eventual: rejected requests are free. strict: quota is taken before
    # validation, so a later 400/403/413 still costs one request.
    quota_policy: str = "eventual"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.quota_policy not in ("eventual", "strict"):
            errors.append(f"QUOTA_POLICY must be 'eventual' or 'strict', got: {self.quota_policy}")

        if self.free_daily_request_limit <= 0 or self.premium_daily_request_limit <= 0:
            errors.append("Daily request limits must be positive")

        if self.max_payload_bytes <= 0:
            errors.append("MAX_PAYLOAD_BYTES must be positive")

        if self.max_webhook_payload_bytes <= 0:
            errors.append("MAX_WEBHOOK_PAYLOAD_BYTES must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    def price_id_for_plan(self, plan: str) -> str:
        """Stripe price ID for a subscription plan."""
        return self.stripe_price_id_yearly if plan == "yearly" else self.stripe_price_id_monthly


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
