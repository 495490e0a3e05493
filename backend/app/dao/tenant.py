"""
Tenant Data Access Object (DAO).

WHAT: Existence checks and provisioning for tenants (agencies).

WHY: Billing needs to confirm that a tenant named in Stripe metadata or a
request path actually exists before writing to its billing record.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.dao.billing_record import BillingRecordDAO
from app.models.tenant import Tenant


class TenantDAO(BaseDAO[Tenant]):
    """Data Access Object for Tenant model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Tenant, session)

    async def provision(
        self,
        name: str,
        slug: str,
        contact_email: Optional[str] = None,
        is_freemium: bool = False,
    ) -> Tenant:
        """
        Create a tenant together with its default FREE billing record.

        WHY: Every tenant has exactly one billing record from the moment it
        exists, so readers never have to special-case a missing row.

        Returns:
            Created Tenant instance
        """
        tenant = await self.create(name=name, slug=slug, contact_email=contact_email)
        await BillingRecordDAO(self.session).create_for_tenant(
            tenant.id,
            is_freemium=is_freemium,
        )
        return tenant
