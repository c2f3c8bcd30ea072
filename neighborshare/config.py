"""Application configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = "development"  # development, staging, production
    debug: bool = False
    secret_key: str = "insecure-development-key"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1"]

    # ==========================================================================
    # Database
    # ==========================================================================
    database_path: str = "db.sqlite3"

    # ==========================================================================
    # Logging
    # ==========================================================================
    log_level: str = "INFO"
    log_json: bool = True

    # ==========================================================================
    # Stripe
    # ==========================================================================
    stripe_api_key: Optional[str] = None
    stripe_currency: str = "usd"

    # ==========================================================================
    # Rent-to-own
    # ==========================================================================
    rto_platform_fee_bps: int = 200  # 2%
    rto_max_payments: int = 36
    rto_default_rental_credit_percent: int = 50
    rto_capture_claim_timeout: int = 120  # seconds
    rto_notification_workers: int = 4
    rto_notification_channel: str = "rto.notifier.LoggingChannel"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def check_stripe_environment(settings: Settings) -> None:
    """Refuse live keys outside production and test keys in production."""
    key = settings.stripe_api_key or ""
    if not key:
        return
    if key.startswith("sk_live_") and not settings.is_production:
        raise RuntimeError(
            f"Live Stripe key configured in {settings.environment} environment"
        )
    if key.startswith("sk_test_") and settings.is_production:
        raise RuntimeError("Test Stripe key configured in production")
