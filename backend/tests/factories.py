"""
Test factories for creating test data.

WHY: Factories provide a consistent, reusable way to create test objects,
reducing duplication and keeping tests consistent when models change.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.tenant import TenantDAO
from app.models.billing_record import BillingRecord, Tier
from app.models.tenant import Tenant


class TenantFactory:
    """
    Factory for creating Tenant test instances.

    Tenants are provisioned through TenantDAO, which also creates the
    FREE billing record.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        name: str = "Test Agency",
        slug: str = "test-agency",
        contact_email: Optional[str] = None,
        is_active: bool = True,
        with_billing_record: bool = True,
    ) -> Tenant:
        """
        Create a tenant for testing.

        Args:
            session: Database session
            name: Tenant display name
            slug: Unique URL slug
            contact_email: Contact email
            is_active: Whether the tenant is active
            with_billing_record: Provision normally (False creates a bare
                tenant row, as data predating billing would look)

        Returns:
            Created Tenant instance
        """
        contact_email = contact_email or f"billing@{slug}.example.com"
        if with_billing_record:
            tenant = await TenantDAO(session).provision(name=name, slug=slug, contact_email=contact_email)
        else:
            tenant = Tenant(name=name, slug=slug, contact_email=contact_email)
            session.add(tenant)
        tenant.is_active = is_active

        await session.commit()
        await session.refresh(tenant)
        return tenant


class BillingRecordFactory:
    """Factory for putting a tenant's billing record into a given state."""

    @staticmethod
    async def create(
        session: AsyncSession,
        tenant: Tenant,
        tier: Tier = Tier.FREE,
        customer_ref: Optional[str] = None,
        subscription_ref: Optional[str] = None,
        period_end: Optional[datetime] = None,
        is_freemium: bool = False,
        freemium_reason: Optional[str] = None,
        freemium_expires_at: Optional[datetime] = None,
    ) -> BillingRecord:
        """
        Create or overwrite the tenant's billing record.

        Returns:
            The billing record as stored
        """
        record = await session.get(BillingRecord, tenant.id)
        if record is None:
            record = BillingRecord(tenant_id=tenant.id)
            session.add(record)

        record.tier = tier
        record.external_customer_ref = customer_ref
        record.external_subscription_ref = subscription_ref
        record.subscription_period_end = period_end
        record.is_freemium = is_freemium
        record.freemium_reason = freemium_reason
        record.freemium_expires_at = freemium_expires_at

        await session.commit()
        await session.refresh(record)
        return record
