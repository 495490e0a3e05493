"""
Stripe gateway for subscription billing.

WHAT: The only module that talks to the Stripe API. It issues customer,
checkout, subscription and billing-portal requests and verifies webhook
signatures.

WHY: Keeping Stripe behind one interface:
1. Turns SDK objects into small dataclasses the services reason about
2. Maps every stripe.StripeError onto our StripeError exactly once
3. Lets tests swap in an in-memory gateway

HOW: Uses a stripe.StripeClient per gateway instance, so each instance
carries its own timeout (the post-checkout reconciler uses a short one).
SDK calls are blocking and are run in the threadpool so a slow Stripe
response never stalls the event loop.

Design decisions:
- API version pinned for stable payload shapes
- Checkout sessions retrieved with the subscription and its price expanded
- Webhook payloads are verified before anything is parsed
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from app.core.exceptions import StripeError, WebhookSignatureError

logger = logging.getLogger(__name__)


STRIPE_API_VERSION = "2023-10-16"

CHECKOUT_SESSION_EXPAND = ["subscription", "subscription.items.data.price"]


# ============================================================================
# Data Classes
# ============================================================================


class CheckoutSessionStatus(str, Enum):
    """Stripe Checkout Session status values."""

    OPEN = "open"
    COMPLETE = "complete"
    EXPIRED = "expired"


def object_id(value: Any) -> Optional[str]:
    """ID of a Stripe reference that may be a bare ID or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return value.get("id")


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    """Unix timestamp to naive UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


@dataclass
class SubscriptionSnapshot:
    """
    One coherent read of a Stripe subscription.

    Only the fields the reconciliation logic needs; the first item carries
    the price because every subscription we create has exactly one item.
    """

    id: str
    customer_id: Optional[str]
    status: Optional[str] = None
    item_id: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancel_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def has_items(self) -> bool:
        return self.item_id is not None

    @classmethod
    def from_stripe(cls, obj: Mapping[str, Any]) -> "SubscriptionSnapshot":
        """
        Build a snapshot from a Stripe subscription object or webhook payload.

        WHY: current_period_end lives on the subscription in older API
        versions and on the subscription item in newer ones; accept either.
        """
        items = (obj.get("items") or {}).get("data") or []
        first_item = items[0] if items else None

        period_end = obj.get("current_period_end")
        item_id = price_id = None
        if first_item is not None:
            item_id = first_item.get("id")
            price_id = object_id(first_item.get("price"))
            period_end = period_end or first_item.get("current_period_end")

        return cls(
            id=obj["id"],
            customer_id=object_id(obj.get("customer")),
            status=obj.get("status"),
            item_id=item_id,
            price_id=price_id,
            current_period_end=_timestamp(period_end),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
            cancel_at=_timestamp(obj.get("cancel_at")),
            metadata=dict(obj.get("metadata") or {}),
        )


@dataclass
class CheckoutSession:
    """
    Represents a Stripe Checkout Session.

    subscription is populated only when the session was retrieved with
    the subscription expanded.
    """

    id: str
    status: Optional[CheckoutSessionStatus]
    url: Optional[str] = None
    payment_status: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription: Optional[SubscriptionSnapshot] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.status == CheckoutSessionStatus.COMPLETE

    @classmethod
    def from_stripe(cls, obj: Mapping[str, Any]) -> "CheckoutSession":
        subscription = obj.get("subscription")
        snapshot = None
        if subscription is not None and not isinstance(subscription, str):
            snapshot = SubscriptionSnapshot.from_stripe(subscription)

        status = obj.get("status")
        return cls(
            id=obj["id"],
            status=CheckoutSessionStatus(status) if status else None,
            url=obj.get("url"),
            payment_status=obj.get("payment_status"),
            customer_id=object_id(obj.get("customer")),
            subscription_id=object_id(subscription),
            subscription=snapshot,
            metadata=dict(obj.get("metadata") or {}),
        )


@dataclass
class WebhookEvent:
    """
    Represents a verified Stripe webhook event.

    data is the event's data.object (a checkout session, subscription
    or invoice depending on type).
    """

    id: str
    type: str
    data: Mapping[str, Any]
    created: Optional[int] = None


# ============================================================================
# Webhook Verification
# ============================================================================


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> WebhookEvent:
    """
    Verify a Stripe webhook signature and parse the event.

    WHAT: Validates that the webhook came from Stripe before any of the
    payload is trusted.

    HOW: stripe.Webhook.construct_event checks the HMAC-SHA256 signature
    and timestamp tolerance, then parses the JSON.

    Args:
        payload: Raw request body bytes
        signature: Stripe-Signature header value
        secret: Endpoint signing secret

    Returns:
        WebhookEvent with verified event data

    Raises:
        WebhookSignatureError: If the signature or payload is invalid
    """
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise WebhookSignatureError(message="Invalid webhook signature")
    except ValueError as e:
        logger.warning(f"Webhook payload could not be parsed: {e}")
        raise WebhookSignatureError(message="Invalid webhook payload")

    return WebhookEvent(
        id=event["id"],
        type=event["type"],
        data=event["data"]["object"],
        created=event.get("created"),
    )


# ============================================================================
# Stripe Gateway
# ============================================================================


class StripeGateway:
    """
    Gateway for the Stripe requests billing issues.

    Every method raises StripeError on any Stripe-side failure.
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 20.0,
        max_network_retries: int = 2,
    ):
        """
        Initialize the gateway.

        Args:
            api_key: Stripe secret key for this environment
            timeout: Per-request network timeout in seconds
            max_network_retries: Automatic retries for idempotent failures
        """
        self.api_key = api_key
        self.timeout = timeout
        self.max_network_retries = max_network_retries
        self._client = stripe.StripeClient(
            api_key,
            stripe_version=STRIPE_API_VERSION,
            max_network_retries=max_network_retries,
            http_client=stripe.RequestsClient(timeout=timeout),
        )

    def with_timeout(self, timeout: float) -> "StripeGateway":
        """Gateway sharing this one's credentials with a different timeout."""
        return StripeGateway(
            self.api_key,
            timeout=timeout,
            max_network_retries=self.max_network_retries,
        )

    async def _call(self, operation: str, func, *args, **context: Any):
        """
        Run a blocking SDK call in the threadpool and map its errors.

        Args:
            operation: Human-readable operation name for errors and logs
            func: Bound StripeClient method
            *args: Positional arguments for func
            **context: Keyword arguments for func

        Raises:
            StripeError: If Stripe rejects the request or is unreachable
        """
        try:
            return await run_in_threadpool(func, *args, **context)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} error: {e}")
            raise StripeError(
                message=f"Failed to {operation}",
                stripe_error=str(e),
            )

    # ========================================================================
    # Customers
    # ========================================================================

    async def create_customer(self, tenant_id: int, email: Optional[str], name: Optional[str]) -> str:
        """
        Create a Stripe customer for a tenant.

        Returns:
            Stripe customer ID (cus_xxx)
        """
        params: Dict[str, Any] = {"metadata": {"tenant_id": str(tenant_id)}}
        if email:
            params["email"] = email
        if name:
            params["name"] = name

        customer = await self._call("create customer", self._client.customers.create, params=params)

        logger.info(
            f"Created Stripe customer {customer['id']} for tenant {tenant_id}",
            extra={"stripe_customer_id": customer["id"], "tenant_id": tenant_id},
        )
        return customer["id"]

    # ========================================================================
    # Checkout Sessions
    # ========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        """
        Create a hosted subscription checkout session.

        WHY: metadata is attached both to the session and to the resulting
        subscription; it is the authority for attributing the subscription
        to a tenant later.
        """
        params = {
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "allow_promotion_codes": True,
        }
        session = await self._call(
            "create checkout session", self._client.checkout.sessions.create, params=params
        )
        return CheckoutSession.from_stripe(session)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Retrieve a checkout session with its subscription and price expanded."""
        session = await self._call(
            "retrieve checkout session",
            self._client.checkout.sessions.retrieve,
            session_id,
            params={"expand": CHECKOUT_SESSION_EXPAND},
        )
        return CheckoutSession.from_stripe(session)

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Retrieve a subscription's current items, price and period."""
        subscription = await self._call(
            "retrieve subscription", self._client.subscriptions.retrieve, subscription_id
        )
        return SubscriptionSnapshot.from_stripe(subscription)

    async def swap_subscription_price(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
    ) -> SubscriptionSnapshot:
        """
        Switch a subscription item to a new price with proration.

        WHY: create_prorations lets Stripe compute the partial-period charge
        or credit. The response is not trusted for local state; the
        customer.subscription.updated webhook is.
        """
        params = {
            "items": [{"id": item_id, "price": price_id}],
            "proration_behavior": "create_prorations",
        }
        subscription = await self._call(
            "update subscription",
            self._client.subscriptions.update,
            subscription_id,
            params=params,
        )
        return SubscriptionSnapshot.from_stripe(subscription)

    # ========================================================================
    # Billing Portal
    # ========================================================================

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a Stripe Billing Portal session.

        Returns:
            Hosted portal URL
        """
        session = await self._call(
            "create billing portal session",
            self._client.billing_portal.sessions.create,
            params={"customer": customer_id, "return_url": return_url},
        )
        return session["url"]
