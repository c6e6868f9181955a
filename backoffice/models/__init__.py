"""
Database models for restaurants, feature state and subscriptions.

All models follow strict tenant isolation patterns.
Tenant-scoped models inherit from TenantScopedMixin.
"""

from backoffice.models.base import TimestampMixin, TenantScopedMixin
from backoffice.models.restaurant import Restaurant, RestaurantPlan, PLAN_TIERS
from backoffice.models.restaurant_feature import RestaurantFeature
from backoffice.models.subscription import (
    Subscription,
    SubscriptionStatus,
    SERVABLE_STATUSES,
)
from backoffice.models.subscription_event import (
    SubscriptionEvent,
    SubscriptionEventType,
)

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "Restaurant",
    "RestaurantPlan",
    "PLAN_TIERS",
    "RestaurantFeature",
    "Subscription",
    "SubscriptionStatus",
    "SERVABLE_STATUSES",
    "SubscriptionEvent",
    "SubscriptionEventType",
]
