"""
Billing API endpoints for agency subscriptions.

WHAT: REST API endpoints for tenant billing:
1. GET  /tenants/{tenant_id}/billing - Billing info (reconciles ?session_id=)
2. POST /tenants/{tenant_id}/billing/checkout - Create Stripe Checkout session
3. POST /tenants/{tenant_id}/billing/upgrade - Prorated plan change
4. POST /tenants/{tenant_id}/billing/portal - Create Customer Portal session
5. POST /tenants/{tenant_id}/billing/sync-session - Explicit checkout sync
6. GET  /billing/checkout-sessions/{session_id} - Checkout session status
7. POST /webhooks/stripe/billing - Handle Stripe billing webhooks

WHY: The billing page drives checkout, upgrades and the portal, and polls
after checkout; Stripe drives the webhook. Both converge on the same
billing record.

SECURITY (OWASP):
- A02: Webhook signature verified before anything is parsed
- A04: Webhook body size capped before it is read into memory
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from app.core.deps import get_billing_service, get_billing_webhook_service
from app.core.exceptions import PayloadTooLargeError
from app.schemas.billing import (
    BillingInfoResponse,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSessionStatusResponse,
    PortalRequest,
    PortalResponse,
    UpgradeRequest,
    UpgradeResponse,
    WebhookResponse,
)
from app.services.billing_service import BillingService
from app.services.billing_webhook_service import BillingWebhookService

logger = logging.getLogger(__name__)

# Stripe billing events are small; anything larger is not from Stripe
MAX_WEBHOOK_BODY_BYTES = 64 * 1024


router = APIRouter(prefix="/tenants/{tenant_id}/billing", tags=["Billing"])


# ============================================================================
# Billing Info
# ============================================================================


@router.get(
    "",
    response_model=BillingInfoResponse,
    summary="Get billing info",
    description="Get the tenant's billing state. Pass session_id after checkout to "
    "apply the completed subscription before its webhook arrives.",
)
async def get_billing_info(
    tenant_id: int,
    session_id: Optional[str] = Query(None, max_length=255),
    service: BillingService = Depends(get_billing_service),
):
    """
    Get a tenant's billing info.

    WHY: The success redirect from Stripe Checkout lands here with a
    session_id; reconciling it makes the new tier visible immediately.
    """
    info = await service.get_billing_info(tenant_id, session_id=session_id)
    return BillingInfoResponse.model_validate(info)


# ============================================================================
# Checkout, Upgrade & Portal
# ============================================================================


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    summary="Create checkout session",
    description="Create a Stripe Checkout session for a new subscription.",
)
async def create_checkout_session(
    tenant_id: int,
    request: CheckoutRequest,
    service: BillingService = Depends(get_billing_service),
):
    checkout = await service.create_checkout_session(
        tenant_id=tenant_id,
        tenant_slug=request.tenant_slug,
        email=request.email,
        display_name=request.display_name,
        tier=request.tier,
        interval=request.interval,
    )
    return CheckoutResponse(url=checkout.url, session_id=checkout.session_id)


@router.post(
    "/upgrade",
    response_model=UpgradeResponse,
    summary="Change plan",
    description="Move the existing subscription to another plan with proration. "
    "The billing record updates when Stripe confirms the change.",
)
async def upgrade_subscription(
    tenant_id: int,
    request: UpgradeRequest,
    service: BillingService = Depends(get_billing_service),
):
    await service.upgrade_subscription(tenant_id, request.tier, request.interval)
    return UpgradeResponse(
        success=True,
        message=f"Subscription change to {request.tier.value} requested",
    )


@router.post(
    "/portal",
    response_model=PortalResponse,
    summary="Create customer portal session",
    description="Create a Stripe Customer Portal session for payment methods and invoices.",
)
async def create_portal_session(
    tenant_id: int,
    request: PortalRequest,
    service: BillingService = Depends(get_billing_service),
):
    portal = await service.create_portal_session(tenant_id, request.tenant_slug)
    return PortalResponse(url=portal.url)


@router.post(
    "/sync-session",
    response_model=BillingInfoResponse,
    summary="Sync subscription from checkout session",
    description="Apply a completed checkout session, reporting why if it can't be applied.",
)
async def sync_subscription_from_session(
    tenant_id: int,
    session_id: str = Query(..., min_length=1, max_length=255),
    service: BillingService = Depends(get_billing_service),
):
    info = await service.sync_subscription_from_session(tenant_id, session_id)
    return BillingInfoResponse.model_validate(info)


# ============================================================================
# Checkout Session Status
# ============================================================================


sessions_router = APIRouter(prefix="/billing", tags=["Billing"])


@sessions_router.get(
    "/checkout-sessions/{session_id}",
    response_model=CheckoutSessionStatusResponse,
    summary="Get checkout session status",
)
async def get_checkout_session_status(
    session_id: str,
    service: BillingService = Depends(get_billing_service),
):
    status = await service.get_checkout_session_status(session_id)
    return CheckoutSessionStatusResponse.model_validate(status)


# ============================================================================
# Webhooks
# ============================================================================


# Separate router for webhooks (signature-authenticated, no tenant in path)
webhooks_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@webhooks_router.post(
    "/stripe/billing",
    response_model=WebhookResponse,
    summary="Stripe billing webhook",
    description="Handles Stripe subscription billing webhooks.",
)
async def stripe_billing_webhook(
    request: Request,
    service: BillingWebhookService = Depends(get_billing_webhook_service),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """
    Handle Stripe billing webhooks.

    WHY: Webhooks are the source of truth for subscription state. A 5xx
    response makes Stripe redeliver, so only failures a retry can fix
    (configuration, Stripe or database errors) return one.

    Returns:
        Acknowledgment of webhook receipt
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_WEBHOOK_BODY_BYTES:
        raise PayloadTooLargeError(max_bytes=MAX_WEBHOOK_BODY_BYTES)

    payload = await request.body()
    if len(payload) > MAX_WEBHOOK_BODY_BYTES:
        raise PayloadTooLargeError(max_bytes=MAX_WEBHOOK_BODY_BYTES)

    result = await service.handle_webhook(payload, stripe_signature)
    return WebhookResponse(received=True, event_type=result.event_type)
