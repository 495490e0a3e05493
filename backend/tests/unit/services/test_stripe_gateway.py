"""
Unit tests for the Stripe gateway.

WHAT: Tests payload parsing, webhook signature verification and SDK
error mapping.

WHY: Everything the reconciliation logic knows about Stripe passes through
these dataclasses. A misread period end or price silently corrupts a
tenant's tier.
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import stripe

from app.core.exceptions import StripeError, WebhookSignatureError
from app.services.stripe_gateway import (
    CheckoutSession,
    CheckoutSessionStatus,
    StripeGateway,
    SubscriptionSnapshot,
    object_id,
    verify_webhook_signature,
)
from tests.stripe_fakes import event_payload, sign_payload


SECRET = "whsec_gateway_test"
PERIOD_END = 1767225600  # 2026-01-01 00:00:00 UTC


def _subscription(**overrides):
    obj = {
        "id": "sub_123",
        "customer": "cus_123",
        "status": "active",
        "current_period_end": PERIOD_END,
        "cancel_at_period_end": False,
        "items": {"data": [{"id": "si_123", "price": {"id": "price_growth_month"}}]},
        "metadata": {"tenant_id": "7"},
    }
    obj.update(overrides)
    return obj


class TestObjectId:
    def test_bare_id(self):
        assert object_id("cus_123") == "cus_123"

    def test_expanded_object(self):
        assert object_id({"id": "cus_123", "object": "customer"}) == "cus_123"

    def test_missing(self):
        assert object_id(None) is None
        assert object_id("") is None


class TestSubscriptionSnapshot:
    def test_reads_first_item(self):
        snapshot = SubscriptionSnapshot.from_stripe(_subscription())

        assert snapshot.id == "sub_123"
        assert snapshot.customer_id == "cus_123"
        assert snapshot.item_id == "si_123"
        assert snapshot.price_id == "price_growth_month"
        assert snapshot.current_period_end == datetime(2026, 1, 1)
        assert snapshot.metadata == {"tenant_id": "7"}
        assert snapshot.has_items

    def test_period_end_from_item(self):
        obj = _subscription(
            current_period_end=None,
            items={"data": [{"id": "si_1", "price": "price_x", "current_period_end": PERIOD_END}]},
        )
        snapshot = SubscriptionSnapshot.from_stripe(obj)

        assert snapshot.current_period_end == datetime(2026, 1, 1)
        assert snapshot.price_id == "price_x"

    def test_no_items(self):
        snapshot = SubscriptionSnapshot.from_stripe(_subscription(items={"data": []}))

        assert not snapshot.has_items
        assert snapshot.price_id is None

    def test_cancellation_fields(self):
        snapshot = SubscriptionSnapshot.from_stripe(
            _subscription(cancel_at_period_end=True, cancel_at=PERIOD_END)
        )

        assert snapshot.cancel_at_period_end is True
        assert snapshot.cancel_at == datetime(2026, 1, 1)


class TestCheckoutSession:
    def test_expanded_subscription(self):
        session = CheckoutSession.from_stripe(
            {
                "id": "cs_123",
                "status": "complete",
                "customer": "cus_123",
                "subscription": _subscription(),
                "metadata": {"tenant_id": "7", "tier": "growth"},
            }
        )

        assert session.is_complete
        assert session.subscription_id == "sub_123"
        assert session.subscription.price_id == "price_growth_month"

    def test_unexpanded_subscription(self):
        session = CheckoutSession.from_stripe(
            {"id": "cs_123", "status": "open", "subscription": "sub_123", "url": "https://x"}
        )

        assert session.status == CheckoutSessionStatus.OPEN
        assert not session.is_complete
        assert session.subscription_id == "sub_123"
        assert session.subscription is None


class TestVerifyWebhookSignature:
    def test_valid_signature(self):
        payload = event_payload("invoice.payment_failed", {"id": "in_1"}, event_id="evt_42")

        event = verify_webhook_signature(payload, sign_payload(payload, SECRET), SECRET)

        assert event.id == "evt_42"
        assert event.type == "invoice.payment_failed"
        assert event.data["id"] == "in_1"

    def test_wrong_secret(self):
        payload = event_payload("invoice.payment_failed", {"id": "in_1"})

        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload, sign_payload(payload, "whsec_other"), SECRET)

    def test_tampered_payload(self):
        payload = event_payload("invoice.payment_failed", {"id": "in_1"})
        signature = sign_payload(payload, SECRET)

        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload.replace(b"in_1", b"in_2"), signature, SECRET)

    def test_expired_timestamp(self):
        payload = event_payload("invoice.payment_failed", {"id": "in_1"})

        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(payload, sign_payload(payload, SECRET, timestamp=1000), SECRET)


@pytest.mark.asyncio
class TestGatewayErrorMapping:
    async def test_stripe_error_mapped(self):
        gateway = StripeGateway("sk_test_123")
        func = MagicMock(side_effect=stripe.APIConnectionError("connection reset"))

        with pytest.raises(StripeError) as exc_info:
            await gateway._call("retrieve subscription", func, "sub_123")

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Failed to retrieve subscription"
        func.assert_called_once_with("sub_123")

    async def test_with_timeout(self):
        gateway = StripeGateway("sk_test_123", timeout=20.0, max_network_retries=3)
        short = gateway.with_timeout(5.0)

        assert short.timeout == 5.0
        assert short.max_network_retries == 3
        assert short.api_key == "sk_test_123"
