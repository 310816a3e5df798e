"""Application configuration management using Pydantic Settings."""

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    app_name: str = Field(default="affhelper-backend", description="Application name")
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

    # Ledger
    ledger_backend: Literal["supabase", "memory"] = Field(
        default="supabase",
        description="Storage backend for orders and balances (memory is for local development only)",
    )
    cashback_rate: Decimal = Field(default=Decimal("0.7"), description="Share of commission paid back to the user")
    min_withdrawal_amount: Decimal = Field(default=Decimal("50000"), description="Minimum withdrawal amount (VND)")

    # Order sync
    sync_enabled: bool = Field(default=True, description="Run the periodic order sync")
    sync_interval_minutes: int = Field(default=30, ge=1, description="Minutes between scheduled order syncs")
    sync_lookback_days: int = Field(default=7, ge=1, description="Days of order history fetched per sync")

    # Shopee Affiliate Open API
    shopee_app_id: str = Field(default="", description="Shopee affiliate app ID")
    shopee_secret_key: str = Field(default="", description="Shopee affiliate secret key")
    shopee_api_url: str = Field(
        default="https://open-api.affiliate.shopee.vn/graphql",
        description="Shopee affiliate GraphQL endpoint",
    )

    # TikTok Shop Open API
    tiktok_app_key: str = Field(default="", description="TikTok Shop app key")
    tiktok_app_secret: str = Field(default="", description="TikTok Shop app secret")
    tiktok_access_token: str = Field(default="", description="TikTok creator access token")
    tiktok_refresh_token: str = Field(default="", description="TikTok creator refresh token")
    tiktok_api_url: str = Field(default="https://open-api.tiktokglobalshop.com", description="TikTok Shop API base URL")
    tiktok_auth_url: str = Field(default="https://auth.tiktok-shops.com", description="TikTok Shop auth base URL")

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=15.0, gt=0, description="Timeout for marketplace API calls")
    http_max_retries: int = Field(default=3, ge=1, description="Attempts for transient marketplace API failures")

    @field_validator("cashback_rate")
    @classmethod
    def validate_cashback_rate(cls, value: Decimal) -> Decimal:
        """Cashback is a share of commission, so it must lie in [0, 1]."""
        if value < 0 or value > 1:
            raise ValueError("cashback_rate must be between 0 and 1")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def shopee_configured(self) -> bool:
        """Check if Shopee credentials are present."""
        return bool(self.shopee_app_id and self.shopee_secret_key)

    @property
    def tiktok_configured(self) -> bool:
        """Check if TikTok app credentials are present."""
        return bool(self.tiktok_app_key and self.tiktok_app_secret)


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable snapshot of the values the order ledger depends on.

    Built once from Settings and handed to the ledger at construction so
    a running sync never observes a rate change halfway through a batch.
    """

    cashback_rate: Decimal
    min_withdrawal_amount: Decimal
    amount_precision: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LedgerConfig":
        """Create config from application settings."""
        settings = settings or get_settings()
        return cls(
            cashback_rate=settings.cashback_rate,
            min_withdrawal_amount=settings.min_withdrawal_amount,
        )


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
