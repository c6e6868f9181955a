"""
Entitlement Resolver - single entry point for per-tenant feature state.

Provides:
- effective_features(tenant_id)  → frozenset of usable feature keys
- get_feature_states(tenant_id)  → full row list in catalog order
- toggle(tenant_id, feature_key, desired_enabled, actor)
- apply_plan(tenant_id, tier, actor)

Architecture:
- Fail-CLOSED: a tenant whose subscription is not servable (or missing)
  gets no features
- Reject-and-report: toggles never cascade to dependencies or dependents
- Validation happens before any write; a rejected toggle mutates nothing

CRITICAL: This is the ONLY module that should read or write
restaurant_features. The caller owns the transaction and the tenant lock.
"""

import logging
from typing import FrozenSet, List, Optional

from sqlalchemy.orm import Session

from backoffice.entitlements.audit import MutationAuditEvent, log_mutation
from backoffice.entitlements.errors import (
    AlwaysOnImmutableError,
    DependencyUnsatisfiedError,
    DependentStillEnabledError,
    EntitlementError,
    RestaurantNotFoundError,
)
from backoffice.entitlements.loader import CatalogLoader, get_catalog_loader
from backoffice.models.restaurant import RestaurantPlan
from backoffice.models.restaurant_feature import RestaurantFeature
from backoffice.models.subscription import SERVABLE_STATUSES, SubscriptionStatus
from backoffice.repositories.feature_state_repository import FeatureStateRepository
from backoffice.repositories.restaurant_repository import (
    RestaurantPlanRepository,
    RestaurantRepository,
)
from backoffice.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)


class EntitlementResolver:
    """
    Resolves and mutates a tenant's feature state.

    One instance per request / job. Stateless between calls except for the
    injected session and loader.
    """

    def __init__(self, db_session: Session, loader: Optional[CatalogLoader] = None):
        self.db = db_session
        self._loader = loader or get_catalog_loader()
        self._restaurants = RestaurantRepository(db_session)
        self._plans = RestaurantPlanRepository(db_session)
        self._subscriptions = SubscriptionRepository(db_session)

    @property
    def catalog(self):
        return self._loader.catalog

    @property
    def plans(self):
        return self._loader.plans

    def _require_restaurant(self, tenant_id: str) -> None:
        if self._restaurants.get(tenant_id) is None:
            raise RestaurantNotFoundError(tenant_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_servable(self, tenant_id: str) -> bool:
        subscription = self._subscriptions.get_for_tenant(tenant_id)
        if subscription is None:
            return False
        return SubscriptionStatus(subscription.status) in SERVABLE_STATUSES

    def effective_features(self, tenant_id: str) -> FrozenSet[str]:
        """
        Features the tenant may use right now.

        Enabled rows plus every always-on key while the subscription is
        trial/active/past_due; empty otherwise. Stored rows are never
        touched, so reactivation restores the same set. No writes.
        """
        self._require_restaurant(tenant_id)
        if not self.is_servable(tenant_id):
            return frozenset()

        repo = FeatureStateRepository(self.db, tenant_id)
        # Rows for keys since removed from the catalog are ignored
        stored = {k for k in repo.enabled_keys() if k in self.catalog}
        return frozenset(stored | self.catalog.always_on_keys())

    def get_feature_states(self, tenant_id: str) -> List[RestaurantFeature]:
        """
        Full row list in catalog order.

        Backfills rows for catalog keys the tenant has none for (disabled,
        or enabled when always-on) and re-enables any always-on row found
        disabled. Flushes but does not commit.
        """
        self._require_restaurant(tenant_id)
        repo = FeatureStateRepository(self.db, tenant_id)
        return self._ensure_rows(repo)

    def _ensure_rows(self, repo: FeatureStateRepository) -> List[RestaurantFeature]:
        always_on = self.catalog.always_on_keys()
        repo.add_missing(self.catalog.keys(), always_on)

        rows = repo.rows_by_key()
        repaired = False
        for key in always_on:
            row = rows[key]
            if not row.enabled:
                row.enabled = True
                row.overridden_by = None
                repaired = True
        if repaired:
            self.db.flush()
            logger.warning("Re-enabled always-on feature rows", extra={
                "tenant_id": repo.tenant_id,
            })

        return [rows[key] for key in self.catalog.keys()]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def toggle(
        self,
        tenant_id: str,
        feature_key: str,
        desired_enabled: bool,
        actor: Optional[str],
    ) -> List[RestaurantFeature]:
        """
        Set one feature's enabled flag.

        Raises (before any write):
            UnknownFeatureError: key not in the catalog
            AlwaysOnImmutableError: feature is always-on
            DependencyUnsatisfiedError: enabling with a requires_all key disabled
            DependentStillEnabledError: disabling while an enabled feature needs it

        Toggling to the current value succeeds and only records the actor.
        """
        try:
            definition = self.catalog.get(feature_key)
            self._require_restaurant(tenant_id)
            if definition.always_on:
                raise AlwaysOnImmutableError(feature_key)

            repo = FeatureStateRepository(self.db, tenant_id)
            # Missing rows count as disabled; always-on keys are always enabled
            enabled = repo.enabled_keys() | self.catalog.always_on_keys()

            if desired_enabled:
                missing = definition.requires_all - enabled
                if missing:
                    raise DependencyUnsatisfiedError(feature_key, missing)
            else:
                blocking = self.catalog.dependents_of(feature_key) & enabled
                if blocking:
                    raise DependentStillEnabledError(feature_key, blocking)
        except EntitlementError as e:
            log_mutation(MutationAuditEvent(
                action="feature_toggled",
                tenant_id=tenant_id,
                actor_id=actor,
                outcome="rejected",
                feature_key=feature_key,
                error_code=e.error_code,
            ))
            raise

        states = self._ensure_rows(repo)
        row = next(r for r in states if r.feature_key == feature_key)
        repo.validate_row(row)
        previous = bool(row.enabled)
        row.enabled = bool(desired_enabled)
        row.overridden_by = actor
        self.db.flush()

        logger.info("Feature toggled", extra={
            "tenant_id": tenant_id,
            "feature_key": feature_key,
            "from": previous,
            "to": bool(desired_enabled),
            "actor_id": actor,
        })
        log_mutation(MutationAuditEvent(
            action="feature_toggled",
            tenant_id=tenant_id,
            actor_id=actor,
            feature_key=feature_key,
            extra_metadata={"enabled": bool(desired_enabled), "changed": previous != bool(desired_enabled)},
        ))
        return states

    def apply_plan(
        self,
        tenant_id: str,
        tier: str,
        actor: Optional[str],
    ) -> RestaurantPlan:
        """
        Reset the tenant's feature state to a plan's defaults.

        Every row becomes enabled iff the key is in the plan or always-on,
        and every overridden_by is cleared. Idempotent. All rows are flushed
        in the caller's transaction.

        Raises:
            UnknownPlanError: tier not in the registry
        """
        try:
            plan = self.plans.get(tier)
            self._require_restaurant(tenant_id)
        except EntitlementError as e:
            log_mutation(MutationAuditEvent(
                action="plan_applied",
                tenant_id=tenant_id,
                actor_id=actor,
                outcome="rejected",
                plan_tier=str(tier),
                error_code=e.error_code,
            ))
            raise

        target = self.plans.enabled_keys_for(plan.tier.value)
        repo = FeatureStateRepository(self.db, tenant_id)
        repo.add_missing(self.catalog.keys(), target)

        changed = 0
        for key, row in repo.rows_by_key().items():
            if key not in self.catalog:
                continue
            desired = key in target
            if bool(row.enabled) != desired or row.overridden_by is not None:
                changed += 1
            row.enabled = desired
            row.overridden_by = None

        restaurant_plan = self._plans.upsert(tenant_id, plan.tier.value, plan.order_limit)

        logger.info("Plan applied", extra={
            "tenant_id": tenant_id,
            "plan_tier": plan.tier.value,
            "rows_changed": changed,
            "actor_id": actor,
        })
        log_mutation(MutationAuditEvent(
            action="plan_applied",
            tenant_id=tenant_id,
            actor_id=actor,
            plan_tier=plan.tier.value,
            extra_metadata={"rows_changed": changed},
        ))
        return restaurant_plan
