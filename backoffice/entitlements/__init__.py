"""
Feature entitlements: catalog, plan registry, loader and resolver.

Usage:
    from backoffice.entitlements import EntitlementResolver, get_catalog_loader

    resolver = EntitlementResolver(db)
    if "delivery_flow" in resolver.effective_features(restaurant_id):
        ...
"""

from backoffice.entitlements.catalog import (
    FeatureCatalog,
    FeatureCategory,
    FeatureDefinition,
)
from backoffice.entitlements.errors import (
    AlwaysOnImmutableError,
    CatalogConfigurationError,
    DependencyUnsatisfiedError,
    DependentStillEnabledError,
    DuplicateSlugError,
    EntitlementError,
    PersistenceError,
    RestaurantNotFoundError,
    UnknownFeatureError,
    UnknownPlanError,
)
from backoffice.entitlements.loader import (
    BillingPolicy,
    CatalogLoader,
    get_catalog_loader,
    reset_catalog_loader,
)
from backoffice.entitlements.locking import TenantLockRegistry, tenant_locks
from backoffice.entitlements.plans import PlanDefinition, PlanRegistry, PlanTier
from backoffice.entitlements.service import EntitlementResolver

__all__ = [
    "FeatureCatalog",
    "FeatureCategory",
    "FeatureDefinition",
    "AlwaysOnImmutableError",
    "CatalogConfigurationError",
    "DependencyUnsatisfiedError",
    "DependentStillEnabledError",
    "DuplicateSlugError",
    "EntitlementError",
    "PersistenceError",
    "RestaurantNotFoundError",
    "UnknownFeatureError",
    "UnknownPlanError",
    "BillingPolicy",
    "CatalogLoader",
    "get_catalog_loader",
    "reset_catalog_loader",
    "TenantLockRegistry",
    "tenant_locks",
    "PlanDefinition",
    "PlanRegistry",
    "PlanTier",
    "EntitlementResolver",
]
