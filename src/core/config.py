"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SettlementMode = Literal["transactional", "sequential"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="ticket-settlement-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Supabase signing key JWK (JSON string) for JWT token verification")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_timeout_seconds: float = Field(default=10.0, gt=0, description="Upper bound for a single Stripe API call")
    stripe_max_network_retries: int = Field(default=0, ge=0, description="Retries performed by the Stripe SDK itself")

    # Settlement
    settlement_mode: SettlementMode = Field(
        default="transactional",
        description="'transactional' settles through the settle_order database function; "
        "'sequential' writes order, tickets and inventory as separate patches",
    )
    successful_checkout_statuses: str = Field(
        default="paid,no_payment_required",
        description="Comma-separated checkout payment statuses that count as paid (exact match)",
    )
    duplicate_window_minutes: int = Field(default=10, ge=0, description="Lookback window for the recent-order duplicate guard")
    duplicate_recent_seconds: int = Field(default=60, ge=0, description="Orders younger than this are treated as duplicates")
    settlement_max_attempts: int = Field(default=3, ge=1, description="Attempts per pushed notification before giving up")
    settlement_retry_min_wait: float = Field(default=1.0, ge=0, description="Minimum backoff between settlement attempts (seconds)")
    settlement_retry_max_wait: float = Field(default=10.0, ge=0, description="Maximum backoff between settlement attempts (seconds)")

    # Commerce
    default_currency: str = Field(default="usd", description="Currency used when a ticket type has none")

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL used to build checkout return URLs",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def successful_checkout_status_set(self) -> frozenset[str]:
        """Parse the successful checkout statuses into a set."""
        return frozenset(s.strip() for s in self.successful_checkout_statuses.split(",") if s.strip())

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
