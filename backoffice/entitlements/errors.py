"""
Structured error classes for entitlement resolution.

Taxonomy:
- CatalogConfigurationError: bad catalog/plan data, fatal at load time
- Validation errors: unknown feature/plan, dependency violations - reported
  to the caller, no state mutation
- PersistenceError: storage unavailable or write conflict - retryable
"""

from typing import Iterable, Optional

from fastapi import status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""

    error_code = "entitlement_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
        }


class CatalogConfigurationError(EntitlementError):
    """
    Raised when the feature catalog or plan definitions are invalid.

    Deploy-time error: the process refuses to start.
    """

    error_code = "catalog_configuration_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class UnknownFeatureError(EntitlementError):
    error_code = "unknown_feature"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, feature_key: str):
        self.feature_key = feature_key
        super().__init__(f"Unknown feature '{feature_key}'")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "feature_key": self.feature_key}


class UnknownPlanError(EntitlementError):
    error_code = "unknown_plan"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, tier: str):
        self.tier = tier
        super().__init__(f"Unknown plan tier '{tier}'")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "plan_tier": self.tier}


class RestaurantNotFoundError(EntitlementError):
    error_code = "restaurant_not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Restaurant '{tenant_id}' not found")


class DuplicateSlugError(EntitlementError):
    error_code = "duplicate_slug"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Restaurant slug '{slug}' is already taken")


class AlwaysOnImmutableError(EntitlementError):
    error_code = "always_on_immutable"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, feature_key: str):
        self.feature_key = feature_key
        super().__init__(f"Feature '{feature_key}' is always on and cannot be toggled")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "feature_key": self.feature_key}


class DependencyUnsatisfiedError(EntitlementError):
    """Enabling a feature whose requires_all keys are not all enabled."""

    error_code = "dependency_unsatisfied"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, feature_key: str, missing: Iterable[str]):
        self.feature_key = feature_key
        self.missing = sorted(missing)
        super().__init__(
            f"Cannot enable '{feature_key}': requires {', '.join(self.missing)}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "feature_key": self.feature_key,
            "missing_dependencies": self.missing,
        }


class DependentStillEnabledError(EntitlementError):
    """Disabling a feature that an enabled feature still requires."""

    error_code = "dependent_still_enabled"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, feature_key: str, dependents: Iterable[str]):
        self.feature_key = feature_key
        self.dependents = sorted(dependents)
        super().__init__(
            f"Cannot disable '{feature_key}': still required by {', '.join(self.dependents)}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "feature_key": self.feature_key,
            "enabled_dependents": self.dependents,
        }


class PersistenceError(EntitlementError):
    """
    Storage unavailable or concurrent-write conflict.

    The engine does not retry on its own: toggle is not idempotent under
    at-least-once delivery. apply_plan is safe to retry.
    """

    error_code = "persistence_error"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage failure during {operation}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "operation": self.operation, "retryable": self.retryable}
