"""
Unit tests for TenantDAO.

WHY: A provisioned tenant must already have its billing record, so the
billing read path and the webhook processor never meet a missing row.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from app.dao.billing_record import BillingRecordDAO
from app.dao.tenant import TenantDAO
from app.models.billing_record import Tier


class TestProvision:
    """Tests for tenant provisioning."""

    @pytest.mark.asyncio
    async def test_creates_free_billing_record(self, db_session):
        tenant = await TenantDAO(db_session).provision(
            name="Initech Agency", slug="initech", contact_email="billing@initech.test"
        )

        assert tenant.id is not None
        assert tenant.slug == "initech"
        record = await BillingRecordDAO(db_session).get_by_tenant_id(tenant.id)
        assert record is not None
        assert record.tier == Tier.FREE
        assert record.external_customer_ref is None
        assert record.external_subscription_ref is None
        assert record.is_freemium is False
        assert record.is_entitled() is False

    @pytest.mark.asyncio
    async def test_freemium_tenant(self, db_session):
        tenant = await TenantDAO(db_session).provision(name="Partner", slug="partner", is_freemium=True)

        record = await BillingRecordDAO(db_session).get_by_tenant_id(tenant.id)
        assert record.tier == Tier.FREE
        assert record.is_freemium is True
        assert record.is_entitled() is True

    @pytest.mark.asyncio
    async def test_duplicate_slug_rejected(self, db_session, test_tenant):
        with pytest.raises(IntegrityError):
            await TenantDAO(db_session).provision(name="Another Acme", slug="acme")
