"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class AdNetworkConfig(BaseModel):
    """One ad network partition: its coin reward and its own daily cap."""

    id: str = Field(..., min_length=1, max_length=50)
    name: str
    coins: int = Field(..., gt=0)
    daily_cap: int = Field(..., gt=0)


def _default_ad_networks() -> list[AdNetworkConfig]:
    return [
        AdNetworkConfig(id="monetag", name="Monetag", coins=5, daily_cap=10),
        AdNetworkConfig(id="adsterra", name="Adsterra", coins=5, daily_cap=10),
        AdNetworkConfig(id="propeller", name="Propeller", coins=5, daily_cap=10),
        AdNetworkConfig(id="adcash", name="Adcash", coins=5, daily_cap=10),
    ]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Mini-App Economy API"
    api_version: str = "0.1.0"
    api_description: str = "Wallet, coins, entitlements and referrals for the storefront"
    cors_origins: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "miniapp-economy-api"

    # Account seeding
    starter_balance: Decimal = Decimal("500")
    starter_coins: int = 100
    starter_api_credits: int = 100

    # Ad rewards
    max_ads_per_day: int = 10
    daily_bonus_coins: int = 10
    ad_cooldown_seconds: int = 15
    ad_networks: list[AdNetworkConfig] = Field(default_factory=_default_ad_networks)

    # Wallet
    coins_per_currency_unit: int = 10  # 10 coins = 1 unit of balance
    min_conversion_coins: int = 10
    min_deposit: Decimal = Decimal("10")

    # Referrals
    referral_enabled: bool = True
    referral_purchase_bonus_coins: int = 50
    referral_channel_bonus: Decimal = Decimal("5")
    referral_channel_id: str = ""

    # Telegram Bot API (channel membership verification)
    telegram_bot_token: str = ""
    telegram_api_base: str = "https://api.telegram.org"

    # User API keys
    user_api_key_prefix: str = "pr-live-"

    # Bot delivery webhooks
    webhook_timeout_seconds: float = 10.0

    # Plans
    default_plan_validity_days: int = 30

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
        elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        if self.coins_per_currency_unit <= 0:
            errors.append("COINS_PER_CURRENCY_UNIT must be positive")
        if self.min_conversion_coins <= 0:
            errors.append("MIN_CONVERSION_COINS must be positive")
        elif (
            self.coins_per_currency_unit > 0
            and self.min_conversion_coins % self.coins_per_currency_unit != 0
        ):
            errors.append("MIN_CONVERSION_COINS must be a multiple of COINS_PER_CURRENCY_UNIT")

        network_ids = [network.id for network in self.ad_networks]
        if len(network_ids) != len(set(network_ids)):
            errors.append("AD_NETWORKS contains duplicate network ids")

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

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    def get_ad_network(self, network_id: str) -> AdNetworkConfig | None:
        """Look up a configured ad network by id."""
        for network in self.ad_networks:
            if network.id == network_id:
                return network
        return None


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
