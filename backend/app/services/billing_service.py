"""
Billing service for agency subscriptions.

WHAT: Business logic for the tenant-facing billing operations: checkout,
prorated upgrades, the billing portal, post-checkout session reconciliation
and the billing info read.

WHY: A tenant's billing record is written by three unordered channels
(webhooks, the post-checkout poll, plan changes). This service owns the two
client-driven channels and keeps them converging on the same state the
webhook processor produces:
1. Write-intent operations (checkout, upgrade, portal) raise to the caller
2. The session reconciler is a passive accelerator and never fails a read
3. Upgrades never touch the local record; the subscription.updated webhook does

HOW: Coordinates between:
- BillingRecordDAO / TenantDAO for persistence
- TierCatalog for price resolution
- StripeGateway for Stripe requests (a short-timeout one for reconciliation)
- derive_subscription_state for the shared state computation

Design decisions:
- Stripe Checkout for new subscriptions: hosted, PCI-compliant
- Customer Portal for payment method and invoice self-service
- Customer reference committed as soon as it exists, so retries reuse it
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AlreadyOnPlanError,
    AlreadySubscribedError,
    NoActiveSubscriptionError,
    StripeError,
    TenantNotFoundError,
    ValidationError,
)
from app.dao.billing_record import BillingRecordDAO
from app.dao.tenant import TenantDAO
from app.models.billing_record import BillingInterval, BillingRecord, Tier
from app.models.tenant import Tenant
from app.services.stripe_gateway import CheckoutSession, StripeGateway
from app.services.subscription_state import derive_subscription_state, tenant_id_from_metadata
from app.services.tier_catalog import TierCatalog

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class CheckoutUrl:
    """Hosted Stripe page to redirect the user to."""

    url: str
    session_id: Optional[str] = None


@dataclass
class BillingInfo:
    """
    Read-only projection of a tenant's billing record.

    WHY: Callers get a snapshot, not the ORM object, so nothing outside
    the DAO can mutate the record.
    """

    tenant_id: int
    tier: Tier
    subscription_id: Optional[str]
    subscription_end: Optional[datetime]
    customer_ref: Optional[str]
    is_freemium: bool
    freemium_expires_at: Optional[datetime]
    is_entitled: bool

    @classmethod
    def from_record(cls, record: BillingRecord) -> "BillingInfo":
        return cls(
            tenant_id=record.tenant_id,
            tier=Tier(record.tier),
            subscription_id=record.external_subscription_ref,
            subscription_end=record.subscription_period_end,
            customer_ref=record.external_customer_ref,
            is_freemium=bool(record.is_freemium),
            freemium_expires_at=record.freemium_expires_at,
            is_entitled=record.is_entitled(),
        )


@dataclass
class CheckoutSessionInfo:
    """Status of a checkout session as the billing page polls it."""

    session_id: str
    status: Optional[str]
    payment_status: Optional[str]
    subscription_id: Optional[str]
    tier: Tier
    customer_id: Optional[str]
    subscription_end: Optional[datetime]


def billing_page_url(tenant_slug: str) -> str:
    """Tenant's billing settings page in the client app."""
    return f"{settings.CLIENT_URL.rstrip('/')}/{tenant_slug}/settings/billing"


# ============================================================================
# Billing Service
# ============================================================================


class BillingService:
    """
    Service for tenant subscription billing.

    WHAT: High-level interface for the billing operations a tenant drives.

    HOW: One instance per request, sharing the request's database session.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: TierCatalog,
        gateway: StripeGateway,
        sync_gateway: Optional[StripeGateway] = None,
    ):
        """
        Initialize billing service.

        Args:
            db: Async database session
            catalog: Tier catalog for this environment
            gateway: Stripe gateway for write-intent operations
            sync_gateway: Short-timeout gateway for session reconciliation
                (defaults to gateway)
        """
        self.db = db
        self.catalog = catalog
        self.gateway = gateway
        self.sync_gateway = sync_gateway or gateway
        self.records = BillingRecordDAO(db)
        self.tenants = TenantDAO(db)

    async def _get_tenant(self, tenant_id: int) -> Tenant:
        tenant = await self.tenants.get_by_id(tenant_id)
        if not tenant:
            raise TenantNotFoundError(tenant_id=tenant_id)
        return tenant

    # ========================================================================
    # Checkout
    # ========================================================================

    async def create_checkout_session(
        self,
        tenant_id: int,
        tenant_slug: str,
        email: Optional[str],
        display_name: Optional[str],
        tier: Tier,
        interval: BillingInterval,
    ) -> CheckoutUrl:
        """
        Create a Stripe Checkout Session for a new subscription.

        WHAT: Resolves the price, ensures the tenant has a Stripe customer,
        and opens a subscription-mode checkout session.

        WHY: The session and its subscription both carry tenant_id/tier
        metadata, which is how the completed checkout is attributed back
        to the tenant by the webhook and the session poll.

        Args:
            tenant_id: Tenant subscribing
            tenant_slug: Tenant URL slug for the redirect URLs
            email: Billing email for a new Stripe customer
            display_name: Customer name for a new Stripe customer
            tier: Target tier
            interval: Billing interval

        Returns:
            CheckoutUrl with the hosted checkout URL and session ID

        Raises:
            PlanNotConfiguredError: If no price is configured (no Stripe call)
            TenantNotFoundError: If the tenant doesn't exist
            AlreadySubscribedError: If a subscription is already on file (no Stripe call)
            StripeError: If a Stripe request fails
        """
        tier = Tier(tier)
        interval = BillingInterval(interval)
        price_id = self.catalog.price_id_for(tier, interval)

        await self._get_tenant(tenant_id)
        record = await self.records.get_or_create_for_tenant(tenant_id)
        if record.has_subscription:
            raise AlreadySubscribedError(
                tenant_id=tenant_id,
                subscription_id=record.external_subscription_ref,
            )

        customer_id = record.external_customer_ref
        if not customer_id:
            customer_id = await self.gateway.create_customer(
                tenant_id=tenant_id, email=email, name=display_name
            )
            record = await self.records.set_customer_ref_if_absent(tenant_id, customer_id)
            await self.db.commit()
            # A concurrent checkout may have stored its customer first
            customer_id = record.external_customer_ref

        base_url = billing_page_url(tenant_slug)
        session = await self.gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=f"{base_url}?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}?canceled=true",
            metadata={"tenant_id": str(tenant_id), "tier": tier.value},
        )

        logger.info(
            f"Created checkout session {session.id} for tenant {tenant_id}",
            extra={
                "tenant_id": tenant_id,
                "tier": tier.value,
                "interval": interval.value,
                "checkout_session_id": session.id,
            },
        )
        return CheckoutUrl(url=session.url, session_id=session.id)

    # ========================================================================
    # Upgrades
    # ========================================================================

    async def upgrade_subscription(
        self,
        tenant_id: int,
        tier: Tier,
        interval: BillingInterval,
    ) -> None:
        """
        Move an existing subscription to a different price with proration.

        WHAT: Swaps the subscription item's price; Stripe computes the
        partial-period charge or credit.

        WHY: The local record is deliberately left alone. Stripe emits
        customer.subscription.updated for the change and the webhook
        processor applies it, so there is a single writer of the new state.

        Raises:
            NoActiveSubscriptionError: If no subscription is on file (no Stripe call)
            PlanNotConfiguredError: If no price is configured (no Stripe call)
            AlreadyOnPlanError: If the subscription already uses the target price
            StripeError: If a Stripe request fails
        """
        record = await self.records.get_by_tenant_id(tenant_id)
        if record is None or not record.has_subscription:
            raise NoActiveSubscriptionError(tenant_id=tenant_id)

        tier = Tier(tier)
        interval = BillingInterval(interval)
        price_id = self.catalog.price_id_for(tier, interval)

        subscription_id = record.external_subscription_ref
        subscription = await self.gateway.retrieve_subscription(subscription_id)
        if not subscription.has_items:
            raise StripeError(
                message="Subscription has no items",
                subscription_id=subscription_id,
            )
        if subscription.price_id == price_id:
            raise AlreadyOnPlanError(tier=tier.value, interval=interval.value)

        await self.gateway.swap_subscription_price(
            subscription_id=subscription_id,
            item_id=subscription.item_id,
            price_id=price_id,
        )

        logger.info(
            f"Requested upgrade of subscription {subscription_id} to {tier.value}/{interval.value}",
            extra={
                "tenant_id": tenant_id,
                "subscription_id": subscription_id,
                "tier": tier.value,
                "interval": interval.value,
            },
        )

    # ========================================================================
    # Billing Portal
    # ========================================================================

    async def create_portal_session(self, tenant_id: int, tenant_slug: str) -> CheckoutUrl:
        """
        Create a Stripe Customer Portal session.

        WHY: Payment methods, invoices and cancellation are managed in the
        hosted portal rather than in our UI.

        Raises:
            TenantNotFoundError: If the tenant doesn't exist
            ValidationError: If the tenant has no Stripe customer yet
            StripeError: If Stripe API fails
        """
        await self._get_tenant(tenant_id)
        record = await self.records.get_by_tenant_id(tenant_id)
        if record is None or not record.external_customer_ref:
            raise ValidationError(
                message="Tenant has no Stripe customer. Subscribe to a plan first.",
                tenant_id=tenant_id,
            )

        url = await self.gateway.create_portal_session(
            customer_id=record.external_customer_ref,
            return_url=billing_page_url(tenant_slug),
        )
        return CheckoutUrl(url=url)

    # ========================================================================
    # Checkout Session Status & Reconciliation
    # ========================================================================

    async def get_checkout_session_status(self, session_id: str) -> CheckoutSessionInfo:
        """
        Get the status of a checkout session for the success page.

        Raises:
            ValidationError: If the session can't be retrieved
        """
        try:
            session = await self.gateway.retrieve_checkout_session(session_id)
        except StripeError:
            raise ValidationError(
                message="Invalid or expired checkout session",
                session_id=session_id,
            )

        snapshot = session.subscription
        return CheckoutSessionInfo(
            session_id=session.id,
            status=session.status.value if session.status else None,
            payment_status=session.payment_status,
            subscription_id=session.subscription_id,
            tier=self.catalog.tier_for(snapshot.price_id if snapshot else None),
            customer_id=session.customer_id,
            subscription_end=snapshot.current_period_end if snapshot else None,
        )

    async def _apply_session(self, tenant_id: int, session: CheckoutSession) -> BillingRecord:
        state = derive_subscription_state(
            session.subscription, self.catalog, customer_ref=session.customer_id
        )
        record = await self.records.apply_subscription_state(tenant_id, state)

        logger.info(
            f"Applied subscription {state.subscription_ref} from checkout session {session.id}",
            extra={
                "tenant_id": tenant_id,
                "subscription_id": state.subscription_ref,
                "tier": state.tier.value,
                "checkout_session_id": session.id,
            },
        )
        return record

    async def reconcile_session(self, tenant_id: int, session_id: str) -> bool:
        """
        Apply a completed checkout session before its webhook arrives.

        WHAT: Passive accelerator called when the billing page loads with
        a session_id after checkout.

        WHY: The checkout.session.completed webhook can lag the redirect by
        seconds. Without this the user would land on a page still showing
        FREE. Failures are logged and swallowed; the webhook still converges.

        HOW: Uses the short-timeout gateway and the same state derivation
        as the webhook, so whichever write lands last writes the same state.
        The write runs in a savepoint; a database failure rolls back only
        the reconciliation and the read that follows still succeeds.

        Returns:
            True if state was applied
        """
        record = await self.records.get_by_tenant_id(tenant_id)
        if record is not None and record.has_subscription:
            return False

        try:
            session = await self.sync_gateway.retrieve_checkout_session(session_id)
        except StripeError as e:
            logger.warning(
                f"Session reconciliation failed for tenant {tenant_id}: {e.message}",
                extra={"tenant_id": tenant_id, "checkout_session_id": session_id},
            )
            return False

        if not session.is_complete or session.subscription is None:
            return False

        if tenant_id_from_metadata(session.metadata) != tenant_id:
            logger.warning(
                f"Checkout session {session_id} does not belong to tenant {tenant_id}",
                extra={"tenant_id": tenant_id, "checkout_session_id": session_id},
            )
            return False

        if not session.subscription.has_items:
            logger.warning(
                f"Checkout session {session_id} subscription has no items",
                extra={"tenant_id": tenant_id, "checkout_session_id": session_id},
            )
            return False

        try:
            async with self.db.begin_nested():
                await self._apply_session(tenant_id, session)
        except SQLAlchemyError as e:
            logger.warning(
                f"Session reconciliation write failed for tenant {tenant_id}: {e}",
                extra={"tenant_id": tenant_id, "checkout_session_id": session_id},
            )
            return False

        return True

    async def sync_subscription_from_session(self, tenant_id: int, session_id: str) -> BillingInfo:
        """
        Explicitly sync a tenant's subscription from a checkout session.

        WHAT: The error-surfacing variant of reconcile_session, for a manual
        "refresh" action on the billing page.

        Raises:
            TenantNotFoundError: If the tenant doesn't exist
            ValidationError: If the session is incomplete, has no
                subscription, or belongs to another tenant
            StripeError: If Stripe API fails
        """
        await self._get_tenant(tenant_id)
        session = await self.gateway.retrieve_checkout_session(session_id)

        if not session.is_complete:
            raise ValidationError(
                message="Checkout session is not complete",
                session_id=session_id,
            )
        if session.subscription is None or not session.subscription.has_items:
            raise ValidationError(
                message="No subscription found in checkout session",
                session_id=session_id,
            )
        if tenant_id_from_metadata(session.metadata) != tenant_id:
            raise ValidationError(
                message="Checkout session does not belong to this tenant",
                session_id=session_id,
            )

        record = await self._apply_session(tenant_id, session)
        return BillingInfo.from_record(record)

    # ========================================================================
    # Billing Info
    # ========================================================================

    async def get_billing_info(self, tenant_id: int, session_id: Optional[str] = None) -> BillingInfo:
        """
        Get a tenant's billing info, reconciling a fresh checkout first.

        WHAT: Read path for the billing page and feature gating.

        WHY: A reconciliation failure must never fail the read; the record
        is read after the attempt regardless of its outcome.

        Raises:
            TenantNotFoundError: If the tenant doesn't exist
        """
        await self._get_tenant(tenant_id)

        if session_id:
            await self.reconcile_session(tenant_id, session_id)

        record = await self.records.get_or_create_for_tenant(tenant_id)
        return BillingInfo.from_record(record)
