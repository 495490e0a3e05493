"""Create tenants and billing_records tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

WHAT: Creates the tenant table and the one-per-tenant billing record that
projects each tenant's Stripe subscription.

WHY: billing_records is keyed by tenant_id so every reconciliation path can
upsert with INSERT ... ON CONFLICT (tenant_id) in a single statement.

HOW: billingtier enum for tiers; unique Stripe customer reference so
subscription webhooks resolve to exactly one tenant.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tenants, billing_records and the billingtier enum."""
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_tenants_id", "tenants", ["id"])
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    billing_tier = sa.Enum("free", "starter", "growth", "enterprise", name="billingtier")

    op.create_table(
        "billing_records",
        sa.Column(
            "tenant_id",
            sa.Integer(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            primary_key=True,
        ),
        sa.Column("tier", billing_tier, nullable=False, server_default="free"),
        # Stripe identifiers
        sa.Column("external_customer_ref", sa.String(length=255), nullable=True),
        sa.Column("external_subscription_ref", sa.String(length=255), nullable=True),
        sa.Column("subscription_period_end", sa.DateTime(), nullable=True),
        # Freemium override
        sa.Column("is_freemium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("freemium_reason", sa.String(length=50), nullable=True),
        sa.Column("freemium_expires_at", sa.DateTime(), nullable=True),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    # WHY: Subscription webhooks are attributed by customer reference
    op.create_index(
        "ix_billing_records_external_customer_ref",
        "billing_records",
        ["external_customer_ref"],
        unique=True,
    )
    op.create_index(
        "ix_billing_records_external_subscription_ref",
        "billing_records",
        ["external_subscription_ref"],
    )


def downgrade() -> None:
    """Drop billing_records, tenants and the billingtier enum."""
    op.drop_index("ix_billing_records_external_subscription_ref", table_name="billing_records")
    op.drop_index("ix_billing_records_external_customer_ref", table_name="billing_records")
    op.drop_table("billing_records")

    op.drop_index("ix_tenants_slug", table_name="tenants")
    op.drop_index("ix_tenants_id", table_name="tenants")
    op.drop_table("tenants")

    op.execute("DROP TYPE IF EXISTS billingtier")
