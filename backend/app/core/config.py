"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Agency Billing API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # URLs
    # WHY: Checkout/portal return URLs are built as {CLIENT_URL}/{tenant_slug}/settings/billing
    CLIENT_URL: str = "http://localhost:3000"

    # Stripe
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    # WHY: The billing notification stream may be signed with its own endpoint
    # secret, distinct from other Stripe webhook streams (invoice payments).
    STRIPE_BILLING_WEBHOOK_SECRET: Optional[str] = None

    # Stripe network behaviour
    # WHY: The session reconciler sits in front of an otherwise fast read,
    # so it gets a much shorter timeout than write-intent calls.
    STRIPE_TIMEOUT_SECONDS: float = 20.0
    STRIPE_SYNC_TIMEOUT_SECONDS: float = 5.0
    STRIPE_MAX_NETWORK_RETRIES: int = 2

    # Stripe Subscription Plans
    # WHY: Price IDs map our tiers to Stripe products for billing
    STRIPE_PRICE_STARTER_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_STARTER_YEARLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_GROWTH_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_GROWTH_YEARLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_ENTERPRISE_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_ENTERPRISE_YEARLY: Optional[str] = None  # price_xxx

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @property
    def billing_webhook_secret(self) -> Optional[str]:
        """
        Signing secret for the billing webhook endpoint.

        WHY: Falls back to the shared webhook secret when no billing-specific
        secret is configured.
        """
        return self.STRIPE_BILLING_WEBHOOK_SECRET or self.STRIPE_WEBHOOK_SECRET

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
