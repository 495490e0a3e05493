"""
Stripe billing webhook processing.

WHAT: Verifies and dispatches the Stripe events that drive a tenant's
subscription state: checkout completion, subscription updates and
deletions, and failed invoice payments.

WHY: Webhooks are the authoritative channel for subscription changes.
Stripe delivers them at least once, possibly out of order, and retries on
any non-2xx response, so:
1. Authenticity failures are rejected before anything is parsed
2. Events we can't attribute to a tenant are acknowledged, not retried
3. Handler failures surface as a 500 so Stripe redelivers the event
4. Every state change is a keyed full-state upsert, so redelivery is harmless

HOW: handle_webhook verifies the signature, then dispatch_event routes by
event type to a handler that derives state with derive_subscription_state
and writes it with BillingRecordDAO.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    StripeError,
    WebhookConfigurationError,
    WebhookError,
    WebhookSignatureError,
)
from app.dao.billing_record import BillingRecordDAO
from app.dao.tenant import TenantDAO
from app.services.stripe_gateway import (
    StripeGateway,
    SubscriptionSnapshot,
    WebhookEvent,
    object_id,
    verify_webhook_signature,
)
from app.services.subscription_state import derive_subscription_state, tenant_id_from_metadata
from app.services.tier_catalog import TierCatalog

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    """Outcome of processing one webhook event."""

    event_id: str
    event_type: str
    handled: bool
    tenant_id: Optional[int] = None


class BillingWebhookService:
    """
    Service for Stripe billing webhooks.

    WHAT: Turns verified Stripe events into billing record writes.

    HOW: One instance per request; the handlers share the request's
    database session, which get_db commits on success.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: TierCatalog,
        gateway: StripeGateway,
        webhook_secret: Optional[str] = None,
    ):
        """
        Initialize webhook service.

        Args:
            db: Async database session
            catalog: Tier catalog for price -> tier resolution
            gateway: Stripe gateway for subscription retrieval
            webhook_secret: Signing secret (defaults to the billing secret
                from settings)
        """
        self.db = db
        self.catalog = catalog
        self.gateway = gateway
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.billing_webhook_secret
        )
        self.records = BillingRecordDAO(db)
        self.tenants = TenantDAO(db)

        self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[Optional[int]]]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Verify and process a Stripe webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            WebhookResult describing what was done

        Raises:
            WebhookConfigurationError: If no signing secret is configured
            WebhookSignatureError: If the signature is missing or invalid
        """
        if not self.webhook_secret:
            logger.error("Billing webhook received but no webhook secret is configured")
            raise WebhookConfigurationError()

        if not signature:
            logger.warning("Billing webhook received without Stripe-Signature header")
            raise WebhookSignatureError(message="Missing Stripe-Signature header")

        event = verify_webhook_signature(payload, signature, self.webhook_secret)
        return await self.dispatch_event(event)

    async def dispatch_event(self, event: WebhookEvent) -> WebhookResult:
        """
        Route a verified event to its handler.

        WHY: Unknown event types are acknowledged so Stripe stops
        redelivering events this endpoint was never meant to act on.
        A handler that fails part-way (Stripe unreachable, database error,
        malformed subscription) raises WebhookError so the delivery is
        answered with 500 and retried.

        Raises:
            WebhookError: If the handler fails
        """
        logger.info(
            f"Processing billing webhook {event.type}",
            extra={"event_id": event.id, "event_type": event.type},
        )

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(
                f"Unhandled billing webhook event type: {event.type}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return WebhookResult(event_id=event.id, event_type=event.type, handled=False)

        try:
            tenant_id = await handler(event)
        except (StripeError, SQLAlchemyError, ValueError) as e:
            logger.error(
                f"Billing webhook {event.type} failed: {e}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            raise WebhookError(
                message=f"Failed to process {event.type}",
                event_id=event.id,
            )

        return WebhookResult(
            event_id=event.id,
            event_type=event.type,
            handled=tenant_id is not None,
            tenant_id=tenant_id,
        )

    # ========================================================================
    # Handlers
    # ========================================================================

    def _unattributed(self, event: WebhookEvent, reason: str, **context: Any) -> None:
        logger.warning(
            f"Ignoring {event.type}: {reason}",
            extra={"event_id": event.id, "event_type": event.type, **context},
        )

    async def _handle_checkout_completed(self, event: WebhookEvent) -> Optional[int]:
        """
        Apply the subscription created by a completed checkout.

        WHAT: Attributes the session by metadata.tenant_id, retrieves the
        subscription for one coherent read, and upserts the full state.

        WHY: The session payload carries only the subscription ID; the price
        and period end come from the subscription itself.
        """
        session = event.data
        tenant_id = tenant_id_from_metadata(session.get("metadata") or {})
        if tenant_id is None:
            self._unattributed(event, "missing or invalid tenant_id metadata")
            return None

        if await self.tenants.get_by_id(tenant_id) is None:
            self._unattributed(event, f"unknown tenant {tenant_id}", tenant_id=tenant_id)
            return None

        subscription_id = object_id(session.get("subscription"))
        if not subscription_id:
            self._unattributed(event, "no subscription on checkout session", tenant_id=tenant_id)
            return None

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        state = derive_subscription_state(
            subscription,
            self.catalog,
            customer_ref=object_id(session.get("customer")),
        )
        await self.records.apply_subscription_state(tenant_id, state)

        logger.info(
            f"Subscription {subscription_id} activated for tenant {tenant_id} on {state.tier.value}",
            extra={
                "event_id": event.id,
                "tenant_id": tenant_id,
                "subscription_id": subscription_id,
                "tier": state.tier.value,
            },
        )
        return tenant_id

    async def _handle_subscription_updated(self, event: WebhookEvent) -> Optional[int]:
        """
        Apply a subscription change (upgrade, downgrade, renewal).

        WHY: Attribution is by customer because the customer reference is
        stable across resubscriptions. A pending cancellation
        (cancel_at_period_end) changes nothing until the subscription is
        actually deleted.
        """
        subscription = SubscriptionSnapshot.from_stripe(event.data)
        record = await self.records.get_by_customer_ref(subscription.customer_id)
        if record is None:
            self._unattributed(
                event,
                f"no tenant for customer {subscription.customer_id}",
                subscription_id=subscription.id,
            )
            return None

        if subscription.cancel_at_period_end:
            logger.info(
                f"Subscription {subscription.id} for tenant {record.tenant_id} "
                f"will cancel at period end",
                extra={
                    "event_id": event.id,
                    "tenant_id": record.tenant_id,
                    "subscription_id": subscription.id,
                    "cancel_at": subscription.cancel_at.isoformat() if subscription.cancel_at else None,
                },
            )
            return record.tenant_id

        state = derive_subscription_state(subscription, self.catalog)
        await self.records.apply_subscription_state(record.tenant_id, state)

        logger.info(
            f"Subscription {subscription.id} updated for tenant {record.tenant_id} to {state.tier.value}",
            extra={
                "event_id": event.id,
                "tenant_id": record.tenant_id,
                "subscription_id": subscription.id,
                "tier": state.tier.value,
            },
        )
        return record.tenant_id

    async def _handle_subscription_deleted(self, event: WebhookEvent) -> Optional[int]:
        """Terminal cancellation: reset the tenant to FREE."""
        subscription = event.data
        customer_id = object_id(subscription.get("customer"))
        record = await self.records.get_by_customer_ref(customer_id)
        if record is None:
            self._unattributed(
                event,
                f"no tenant for customer {customer_id}",
                subscription_id=subscription.get("id"),
            )
            return None

        await self.records.reset_to_free(record.tenant_id)

        logger.info(
            f"Subscription {subscription.get('id')} deleted, tenant {record.tenant_id} reset to free",
            extra={
                "event_id": event.id,
                "tenant_id": record.tenant_id,
                "subscription_id": subscription.get("id"),
            },
        )
        return record.tenant_id

    async def _handle_payment_failed(self, event: WebhookEvent) -> Optional[int]:
        """
        Record a failed invoice payment.

        WHY: Stripe's own dunning retries the charge and eventually emits
        subscription.updated or subscription.deleted; nothing changes here.
        """
        invoice = event.data
        customer_id = object_id(invoice.get("customer"))
        record = await self.records.get_by_customer_ref(customer_id)
        tenant_id = record.tenant_id if record else None

        logger.warning(
            f"Invoice payment failed for customer {customer_id}",
            extra={
                "event_id": event.id,
                "tenant_id": tenant_id,
                "stripe_customer_id": customer_id,
                "amount_due": invoice.get("amount_due"),
                "attempt_count": invoice.get("attempt_count"),
            },
        )
        return tenant_id

