"""
Convergent subscription state derivation.

WHAT: Turns one Stripe subscription read into the complete SubscriptionState
that the billing record stores.

WHY: The checkout webhook, the subscription.updated webhook and the
post-checkout session poll all write the same row. They converge only if
they compute the state identically, so they all call this one function.
"""

import logging
from datetime import datetime, timedelta
from typing import Mapping, Optional

from app.dao.billing_record import SubscriptionState
from app.models.base import utcnow
from app.services.stripe_gateway import SubscriptionSnapshot
from app.services.tier_catalog import TierCatalog

logger = logging.getLogger(__name__)


# Used only when Stripe reports no period end at all
FALLBACK_PERIOD = timedelta(days=30)


def derive_period_end(snapshot: SubscriptionSnapshot, now: Optional[datetime] = None) -> datetime:
    """
    Period end for a subscription, falling back to now + 30 days.

    SubscriptionSnapshot.from_stripe already prefers the subscription-level
    current_period_end and falls back to the first item's.
    """
    if snapshot.current_period_end is not None:
        return snapshot.current_period_end

    logger.warning(
        f"Subscription {snapshot.id} has no current_period_end, using fallback",
        extra={"subscription_id": snapshot.id},
    )
    return (now or utcnow()) + FALLBACK_PERIOD


def derive_subscription_state(
    snapshot: SubscriptionSnapshot,
    catalog: TierCatalog,
    customer_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SubscriptionState:
    """
    Derive the complete billing state for a subscription.

    Args:
        snapshot: One coherent read of the subscription
        catalog: Tier catalog for price -> tier resolution
        customer_ref: Customer to record if none is on file; defaults to
            the subscription's customer
        now: Clock override for the period-end fallback

    Returns:
        SubscriptionState with tier, subscription ref and period end

    Raises:
        ValueError: If the subscription has no items
    """
    if not snapshot.has_items:
        raise ValueError(f"Subscription {snapshot.id} has no items")

    return SubscriptionState(
        tier=catalog.tier_for(snapshot.price_id),
        subscription_ref=snapshot.id,
        period_end=derive_period_end(snapshot, now),
        customer_ref=customer_ref or snapshot.customer_id,
    )


def tenant_id_from_metadata(metadata: Mapping[str, str]) -> Optional[int]:
    """
    Parse the tenant_id we attach to checkout metadata.

    Returns:
        The tenant ID, or None when it is missing or not an integer
    """
    raw = (metadata or {}).get("tenant_id")
    if not raw:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
