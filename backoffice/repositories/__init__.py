"""Repository layer with tenant isolation enforcement."""

from backoffice.repositories.feature_state_repository import (
    FeatureStateRepository,
    TenantIsolationError,
)
from backoffice.repositories.restaurant_repository import (
    RestaurantRepository,
    RestaurantPlanRepository,
)
from backoffice.repositories.subscription_repository import (
    SubscriptionRepository,
    SubscriptionEventRepository,
)

__all__ = [
    "FeatureStateRepository",
    "TenantIsolationError",
    "RestaurantRepository",
    "RestaurantPlanRepository",
    "SubscriptionRepository",
    "SubscriptionEventRepository",
]
