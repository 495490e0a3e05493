"""
Billing Record Data Access Object (DAO).

WHAT: Persistence for the one-per-tenant billing record.

WHY: Three unordered writers (checkout webhook, subscription webhooks,
post-checkout session polling) converge on the same row. Every write that
changes subscription state is a single-statement upsert keyed by tenant_id
that replaces tier, subscription reference and period end together, so
two racing writers can never interleave into a mixed record.

HOW: INSERT ... ON CONFLICT (tenant_id) DO UPDATE, using the PostgreSQL or
SQLite insert construct depending on the bound dialect. Both support the
same on_conflict_do_update / RETURNING API.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.base import utcnow
from app.models.billing_record import BillingRecord, Tier


@dataclass(frozen=True)
class SubscriptionState:
    """
    Complete target state for a tenant's subscription projection.

    WHY: Writers always hand the DAO a complete state computed from one
    coherent Stripe read, never a partial patch.
    """

    tier: Tier
    subscription_ref: Optional[str]
    period_end: Optional[datetime]
    customer_ref: Optional[str] = None


FREE_STATE = SubscriptionState(tier=Tier.FREE, subscription_ref=None, period_end=None)


class BillingRecordDAO(BaseDAO[BillingRecord]):
    """Data Access Object for BillingRecord."""

    def __init__(self, session: AsyncSession):
        super().__init__(BillingRecord, session)

    async def get_by_tenant_id(self, tenant_id: int) -> Optional[BillingRecord]:
        """Get the billing record for a tenant, or None."""
        return await self.get_by_id(tenant_id)

    async def get_by_customer_ref(self, customer_ref: str) -> Optional[BillingRecord]:
        """
        Get the billing record owning a Stripe customer.

        WHY: Subscription webhooks are attributed by customer, not by
        subscription ID, because the subscription reference can rotate
        (resubscribe after cancellation) while the customer is stable.
        """
        if not customer_ref:
            return None
        return await self.get_by_field("external_customer_ref", customer_ref)

    async def create_for_tenant(
        self,
        tenant_id: int,
        is_freemium: bool = False,
        freemium_reason: Optional[str] = None,
        freemium_expires_at: Optional[datetime] = None,
    ) -> BillingRecord:
        """
        Create the default FREE billing record for a newly provisioned tenant.

        Raises:
            IntegrityError: If the tenant already has a billing record
        """
        return await self.create(
            tenant_id=tenant_id,
            tier=Tier.FREE,
            is_freemium=is_freemium,
            freemium_reason=freemium_reason,
            freemium_expires_at=freemium_expires_at,
        )

    async def get_or_create_for_tenant(self, tenant_id: int) -> BillingRecord:
        """Get the tenant's billing record, creating a FREE one if missing."""
        record = await self.get_by_tenant_id(tenant_id)
        if record:
            return record
        return await self.create_for_tenant(tenant_id)

    async def set_customer_ref_if_absent(self, tenant_id: int, customer_ref: str) -> BillingRecord:
        """
        Store the Stripe customer reference unless one is already on file.

        WHY: The customer reference is set once and never replaced, so a
        retried checkout reuses the same Stripe customer.

        Returns:
            The billing record as stored after the write
        """
        return await self._upsert(
            tenant_id,
            insert_values={"external_customer_ref": customer_ref},
            update_values={},
        )

    async def apply_subscription_state(
        self, tenant_id: int, state: SubscriptionState
    ) -> BillingRecord:
        """
        Replace the tenant's subscription projection with a complete state.

        WHAT: Upserts tier, subscription reference and period end in one
        statement; stores the customer reference only if none is on file.

        WHY: This is the single convergence point for webhooks and session
        polling. Re-applying the same state is a no-op in effect, so
        redelivered events need no dedup ledger.

        Args:
            tenant_id: Tenant whose record is replaced
            state: Complete target state

        Returns:
            The billing record as stored after the write
        """
        values = {
            "tier": state.tier,
            "external_subscription_ref": state.subscription_ref,
            "subscription_period_end": state.period_end,
        }
        insert_values = dict(values)
        if state.customer_ref:
            insert_values["external_customer_ref"] = state.customer_ref

        return await self._upsert(tenant_id, insert_values=insert_values, update_values=values)

    async def reset_to_free(self, tenant_id: int) -> BillingRecord:
        """
        Terminal reset after a subscription is deleted.

        Clears subscription reference and period end and sets tier FREE.
        The customer reference and freemium override are kept.
        """
        return await self.apply_subscription_state(tenant_id, FREE_STATE)

    async def set_freemium(
        self,
        tenant_id: int,
        is_freemium: bool,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Optional[BillingRecord]:
        """
        Grant or revoke the freemium override.

        WHY: Used for beta/partner cohorts; it never touches the
        subscription projection.
        """
        await self.session.execute(
            update(BillingRecord)
            .where(BillingRecord.tenant_id == tenant_id)
            .values(
                is_freemium=is_freemium,
                freemium_reason=reason if is_freemium else None,
                freemium_expires_at=expires_at if is_freemium else None,
                updated_at=utcnow(),
            )
        )
        return await self.get_by_tenant_id(tenant_id)

    async def _upsert(
        self,
        tenant_id: int,
        insert_values: dict,
        update_values: dict,
    ) -> BillingRecord:
        """
        Run a single INSERT ... ON CONFLICT DO UPDATE keyed by tenant_id.

        The customer reference is always merged as COALESCE(existing,
        incoming) so it is never overwritten or cleared.
        """
        insert = postgresql.insert if self.dialect_name == "postgresql" else sqlite.insert
        now = utcnow()

        stmt = insert(BillingRecord).values(
            tenant_id=tenant_id,
            created_at=now,
            updated_at=now,
            **insert_values,
        )
        set_ = dict(update_values)
        set_["external_customer_ref"] = func.coalesce(
            BillingRecord.external_customer_ref,
            stmt.excluded.external_customer_ref,
        )
        set_["updated_at"] = now

        stmt = stmt.on_conflict_do_update(
            index_elements=[BillingRecord.tenant_id],
            set_=set_,
        ).returning(BillingRecord)

        result = await self.session.scalars(
            stmt, execution_options={"populate_existing": True}
        )
        return result.one()
