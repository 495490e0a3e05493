"""
FastAPI dependencies for billing services.

WHY: The tier catalog and Stripe gateways are built once per process from
settings and injected into route handlers, so tests can override them with
fixture catalogs and in-memory gateways through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import get_db
from app.services.billing_service import BillingService
from app.services.billing_webhook_service import BillingWebhookService
from app.services.stripe_gateway import StripeGateway
from app.services.tier_catalog import TierCatalog


@lru_cache
def get_tier_catalog() -> TierCatalog:
    """Tier catalog for the configured environment."""
    return TierCatalog.from_settings(settings)


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    """
    Stripe gateway for write-intent operations.

    WHY: Checkout, upgrade and webhook handling can wait on Stripe for the
    full STRIPE_TIMEOUT_SECONDS.
    """
    return StripeGateway(
        settings.STRIPE_SECRET_KEY,
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    )


@lru_cache
def get_sync_stripe_gateway() -> StripeGateway:
    """
    Short-timeout Stripe gateway for post-checkout reconciliation.

    WHY: Reconciliation runs on the billing page read path; a slow Stripe
    response must not hold the page for longer than STRIPE_SYNC_TIMEOUT_SECONDS.
    """
    return get_stripe_gateway().with_timeout(settings.STRIPE_SYNC_TIMEOUT_SECONDS)


def get_billing_service(
    db: AsyncSession = Depends(get_db),
    catalog: TierCatalog = Depends(get_tier_catalog),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    sync_gateway: StripeGateway = Depends(get_sync_stripe_gateway),
) -> BillingService:
    """Billing service bound to the request's database session."""
    return BillingService(db, catalog, gateway, sync_gateway=sync_gateway)


def get_billing_webhook_service(
    db: AsyncSession = Depends(get_db),
    catalog: TierCatalog = Depends(get_tier_catalog),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> BillingWebhookService:
    """Webhook service bound to the request's database session."""
    return BillingWebhookService(db, catalog, gateway)
