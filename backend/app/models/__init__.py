"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin
from app.models.tenant import Tenant
from app.models.billing_record import BillingRecord, BillingInterval, Tier

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Tenant",
    "BillingRecord",
    "BillingInterval",
    "Tier",
]
