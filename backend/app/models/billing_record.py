"""
Billing record model: the local projection of a tenant's Stripe subscription.

WHY: Stripe is the system of record for payment methods and subscriptions.
We persist only the derived projection (tier, subscription reference,
period end) needed to gate features, never the Stripe objects verbatim.

ARCHITECTURE:
- One record per tenant, keyed by tenant_id (1:1)
- Written only through full-state upserts (BillingRecordDAO)
- Freemium override grants full entitlement regardless of tier
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Enum,
    ForeignKey,
    DateTime,
    Boolean,
)
from sqlalchemy.orm import relationship

from app.models.base import Base, TimestampMixin, utcnow


class Tier(str, enum.Enum):
    """
    Subscription tiers.

    Tiers:
    - FREE: No Stripe subscription, default for new tenants
    - STARTER: Small agencies
    - GROWTH: Growing agencies, branding and analytics
    - ENTERPRISE: Unlimited
    """

    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"
    ENTERPRISE = "enterprise"


class BillingInterval(str, enum.Enum):
    """Billing interval, named the way Stripe names recurring intervals."""

    MONTH = "month"
    YEAR = "year"


def _enum_values(enum_cls) -> list:
    # WHY: Store lowercase values ("growth"), not member names ("GROWTH")
    return [member.value for member in enum_cls]


class BillingRecord(Base, TimestampMixin):
    """
    Billing state for a single tenant.

    LIFECYCLE:
    1. Tenant provisioned -> FREE, no customer, no subscription
    2. Checkout started -> customer reference stored (never cleared)
    3. Checkout completed / subscription updated -> tier, subscription
       reference and period end replaced together
    4. Subscription deleted -> back to FREE with subscription fields cleared
    """

    __tablename__ = "billing_records"

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        primary_key=True,
    )

    tier = Column(
        Enum(Tier, name="billingtier", values_callable=_enum_values),
        nullable=False,
        default=Tier.FREE,
        doc="Tier derived from the last accepted Stripe subscription state",
    )

    # Stripe identifiers
    external_customer_ref = Column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
        doc="Stripe customer ID (cus_xxx)",
    )
    external_subscription_ref = Column(
        String(255),
        nullable=True,
        index=True,
        doc="Stripe subscription ID (sub_xxx); empty means no subscription on file",
    )
    subscription_period_end = Column(
        DateTime,
        nullable=True,
        doc="End of the current paid period (naive UTC)",
    )

    # Freemium override
    is_freemium = Column(Boolean, nullable=False, default=False)
    freemium_reason = Column(String(50), nullable=True)
    freemium_expires_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="billing_record")

    def __repr__(self) -> str:
        return (
            f"<BillingRecord(tenant_id={self.tenant_id}, tier={self.tier}, "
            f"subscription={self.external_subscription_ref})>"
        )

    @property
    def has_subscription(self) -> bool:
        """Check if a Stripe subscription is on file."""
        return bool(self.external_subscription_ref)

    def is_freemium_active(self, now: Optional[datetime] = None) -> bool:
        """Check if the freemium override currently applies."""
        if not self.is_freemium:
            return False
        if self.freemium_expires_at is None:
            return True
        return self.freemium_expires_at > (now or utcnow())

    def is_entitled(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the tenant currently has paid entitlement.

        WHY: Freemium tenants are fully entitled regardless of tier. Paid
        tiers are entitled until the period end lapses without renewal.

        Returns:
            True if the tenant should get paid features
        """
        now = now or utcnow()
        if self.is_freemium_active(now):
            return True
        if self.tier in (None, Tier.FREE):
            return False
        return self.subscription_period_end is None or self.subscription_period_end > now
