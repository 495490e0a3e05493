"""
Tenant model.

WHY: Tenants (agencies) are the unit of billing isolation. The tenant
record itself is owned by the wider product; billing only needs enough
of it to attribute Stripe signals and build return URLs.
"""

from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Tenant(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Agency account in the multi-tenant system.

    Each tenant has exactly one BillingRecord, created when the tenant
    is provisioned.
    """

    __tablename__ = "tenants"

    name = Column(String(255), nullable=False)

    # WHY: slug is embedded in checkout/portal return URLs
    slug = Column(String(100), nullable=False, unique=True, index=True)

    contact_email = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    billing_record = relationship(
        "BillingRecord",
        back_populates="tenant",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug})>"
