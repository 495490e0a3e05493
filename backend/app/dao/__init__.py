"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from app.dao.base import BaseDAO
from app.dao.billing_record import BillingRecordDAO, SubscriptionState, FREE_STATE
from app.dao.tenant import TenantDAO

__all__ = [
    "BaseDAO",
    "BillingRecordDAO",
    "SubscriptionState",
    "FREE_STATE",
    "TenantDAO",
]
