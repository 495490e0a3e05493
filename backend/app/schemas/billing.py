"""
Billing schemas for API request/response validation.

WHAT: Pydantic schemas for the tenant billing endpoints and the Stripe
billing webhook.

WHY: Schemas provide:
1. Type-safe request/response handling
2. Automatic validation with clear error messages
3. OpenAPI documentation generation

HOW: Uses Pydantic v2. JSON bodies use camelCase aliases to match the
client app; request models also accept snake_case field names.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.billing_record import BillingInterval, Tier


class CamelModel(BaseModel):
    """Base schema serializing to camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Billing Info
# ============================================================================


class BillingInfoResponse(CamelModel):
    """
    A tenant's current billing state.

    WHY: isEntitled is computed server-side so every client gates paid
    features with the same rule (freemium override, tier, period end).
    """

    tenant_id: int
    tier: Tier
    subscription_id: Optional[str] = None
    subscription_end: Optional[datetime] = None
    customer_ref: Optional[str] = None
    is_freemium: bool = False
    freemium_expires_at: Optional[datetime] = None
    is_entitled: bool = False


# ============================================================================
# Checkout & Portal
# ============================================================================


class CheckoutRequest(CamelModel):
    """Request to start a subscription checkout."""

    tenant_slug: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    display_name: Optional[str] = Field(None, max_length=255)
    tier: Tier
    interval: BillingInterval = BillingInterval.MONTH


class CheckoutResponse(CamelModel):
    """Hosted checkout page to redirect to."""

    url: str
    session_id: Optional[str] = None


class UpgradeRequest(CamelModel):
    """Request to move an existing subscription to another plan."""

    tier: Tier
    interval: BillingInterval = BillingInterval.MONTH


class UpgradeResponse(CamelModel):
    success: bool
    message: str


class PortalRequest(CamelModel):
    tenant_slug: str = Field(..., min_length=1, max_length=100)


class PortalResponse(CamelModel):
    url: str


# ============================================================================
# Checkout Session Status
# ============================================================================


class CheckoutSessionStatusResponse(CamelModel):
    """
    Checkout session status for the post-checkout success page.

    status is Stripe's session status (open, complete, expired).
    """

    session_id: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    subscription_id: Optional[str] = None
    tier: Tier = Tier.FREE
    customer_id: Optional[str] = None
    subscription_end: Optional[datetime] = None


# ============================================================================
# Webhooks
# ============================================================================


class WebhookResponse(CamelModel):
    """Acknowledgment returned to Stripe."""

    received: bool = True
    event_type: Optional[str] = None
