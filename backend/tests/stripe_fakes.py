"""
In-memory stand-in for StripeGateway, plus Stripe payload builders.

WHY: Billing tests need to control exactly what Stripe reports (prices,
period ends, session status) and to assert which Stripe calls were made,
without network access.
"""

import json
import hashlib
import hmac
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from app.core.exceptions import StripeError
from app.models.base import utcnow
from app.services.stripe_gateway import (
    CheckoutSession,
    CheckoutSessionStatus,
    SubscriptionSnapshot,
)


def to_timestamp(value: Optional[datetime]) -> Optional[int]:
    """Naive UTC datetime to a Unix timestamp, as Stripe sends it."""
    if value is None:
        return None
    return int((value - datetime(1970, 1, 1)).total_seconds())


def period_end_in(days: int = 30) -> datetime:
    """A whole-second naive UTC period end, so it round-trips through timestamps."""
    return (utcnow() + timedelta(days=days)).replace(microsecond=0)


class FakeStripeGateway:
    """
    Records every call and serves subscriptions and sessions from memory.

    Set fail_with to a StripeError to make every call raise it.
    """

    def __init__(self):
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, SubscriptionSnapshot] = {}
        self.checkout_sessions: Dict[str, CheckoutSession] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_with: Optional[StripeError] = None
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter}"

    def _record(self, call: str, **kwargs: Any) -> None:
        self.calls.append((call, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def calls_to(self, call: str) -> List[Dict[str, Any]]:
        return [kwargs for recorded, kwargs in self.calls if recorded == call]

    def with_timeout(self, timeout: float) -> "FakeStripeGateway":
        return self

    # ========================================================================
    # Test setup helpers
    # ========================================================================

    def add_subscription(
        self,
        customer_id: str,
        price_id: Optional[str],
        period_end: Optional[datetime] = None,
        subscription_id: Optional[str] = None,
        with_items: bool = True,
    ) -> SubscriptionSnapshot:
        """Store a subscription as Stripe would report it."""
        subscription = SubscriptionSnapshot(
            id=subscription_id or self._next_id("sub"),
            customer_id=customer_id,
            status="active",
            item_id=self._next_id("si") if with_items else None,
            price_id=price_id if with_items else None,
            current_period_end=period_end,
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    def add_checkout_session(
        self,
        tenant_id: Optional[int],
        subscription: Optional[SubscriptionSnapshot] = None,
        status: CheckoutSessionStatus = CheckoutSessionStatus.COMPLETE,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """Store a checkout session with its subscription expanded."""
        metadata = {"tenant_id": str(tenant_id)} if tenant_id is not None else {}
        session = CheckoutSession(
            id=self._next_id("cs"),
            status=status,
            url="https://checkout.stripe.test/session",
            payment_status="paid" if status == CheckoutSessionStatus.COMPLETE else "unpaid",
            customer_id=customer_id or (subscription.customer_id if subscription else None),
            subscription_id=subscription.id if subscription else None,
            subscription=subscription,
            metadata=metadata,
        )
        self.checkout_sessions[session.id] = session
        return session

    # ========================================================================
    # StripeGateway interface
    # ========================================================================

    async def create_customer(self, tenant_id: int, email: Optional[str], name: Optional[str]) -> str:
        self._record("create_customer", tenant_id=tenant_id, email=email, name=name)
        customer_id = self._next_id("cus")
        self.customers[customer_id] = {
            "email": email,
            "name": name,
            "metadata": {"tenant_id": str(tenant_id)},
        }
        return customer_id

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        self._record(
            "create_checkout_session",
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        session = CheckoutSession(
            id=self._next_id("cs"),
            status=CheckoutSessionStatus.OPEN,
            url=f"https://checkout.stripe.test/{price_id}",
            customer_id=customer_id,
            metadata=dict(metadata),
        )
        self.checkout_sessions[session.id] = session
        return session

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        self._record("retrieve_checkout_session", session_id=session_id)
        if session_id not in self.checkout_sessions:
            raise StripeError(message="Failed to retrieve checkout session", session_id=session_id)
        return self.checkout_sessions[session_id]

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self._record("retrieve_subscription", subscription_id=subscription_id)
        if subscription_id not in self.subscriptions:
            raise StripeError(message="Failed to retrieve subscription", subscription_id=subscription_id)
        return self.subscriptions[subscription_id]

    async def swap_subscription_price(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
    ) -> SubscriptionSnapshot:
        self._record(
            "swap_subscription_price",
            subscription_id=subscription_id,
            item_id=item_id,
            price_id=price_id,
        )
        subscription = self.subscriptions[subscription_id]
        subscription.price_id = price_id
        return subscription

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self._record("create_portal_session", customer_id=customer_id, return_url=return_url)
        return f"https://billing.stripe.test/portal/{customer_id}"


# ============================================================================
# Webhook payload builders
# ============================================================================


def subscription_object(
    subscription: SubscriptionSnapshot,
    cancel_at_period_end: bool = False,
    period_end_on_item: bool = False,
) -> Dict[str, Any]:
    """Stripe subscription object as delivered in customer.subscription.* events."""
    period_end = to_timestamp(subscription.current_period_end)
    item: Dict[str, Any] = {
        "id": subscription.item_id,
        "object": "subscription_item",
        "price": {"id": subscription.price_id, "object": "price"},
    }
    obj: Dict[str, Any] = {
        "id": subscription.id,
        "object": "subscription",
        "customer": subscription.customer_id,
        "status": subscription.status or "active",
        "cancel_at_period_end": cancel_at_period_end,
        "cancel_at": period_end if cancel_at_period_end else None,
        "items": {"object": "list", "data": [item] if subscription.item_id else []},
        "metadata": {},
    }
    if period_end_on_item:
        item["current_period_end"] = period_end
    else:
        obj["current_period_end"] = period_end
    return obj


def checkout_session_object(
    tenant_id: Optional[Any],
    subscription_id: Optional[str],
    customer_id: Optional[str],
) -> Dict[str, Any]:
    """Stripe checkout session object as delivered in checkout.session.completed."""
    metadata = {} if tenant_id is None else {"tenant_id": str(tenant_id), "tier": "starter"}
    return {
        "id": "cs_test_webhook",
        "object": "checkout.session",
        "mode": "subscription",
        "status": "complete",
        "customer": customer_id,
        "subscription": subscription_id,
        "metadata": metadata,
    }


def invoice_object(customer_id: str, amount_due: int = 4900, attempt_count: int = 1) -> Dict[str, Any]:
    return {
        "id": "in_test_failed",
        "object": "invoice",
        "customer": customer_id,
        "amount_due": amount_due,
        "attempt_count": attempt_count,
    }


def event_payload(event_type: str, data_object: Dict[str, Any], event_id: str = "evt_test_1") -> bytes:
    """Serialized Stripe event body."""
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": data_object},
        }
    ).encode()


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """
    Build a Stripe-Signature header for a payload.

    HOW: Stripe signs "{timestamp}.{payload}" with HMAC-SHA256 using the
    endpoint secret and sends it as "t=...,v1=...".
    """
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
