"""
Admin mutation service - orchestrates the resolver and the subscription
state machine for the back-office API.

Transaction model:
- One transaction per request
- Mutations hold the in-process tenant lock and SELECT ... FOR UPDATE the
  tenant's restaurants row for the whole transaction
- Validation errors roll back and propagate unchanged
- SQLAlchemyError (including StaleDataError) rolls back and is raised as a
  retryable PersistenceError; nothing is retried here
"""

import logging
import re
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.entitlements.errors import (
    DuplicateSlugError,
    EntitlementError,
    PersistenceError,
    RestaurantNotFoundError,
)
from backoffice.entitlements.loader import CatalogLoader, get_catalog_loader
from backoffice.entitlements.locking import TenantLockRegistry, tenant_locks
from backoffice.entitlements.service import EntitlementResolver
from backoffice.models.restaurant import Restaurant
from backoffice.models.subscription import SERVABLE_STATUSES, SubscriptionStatus
from backoffice.repositories.restaurant_repository import (
    RestaurantPlanRepository,
    RestaurantRepository,
)
from backoffice.repositories.subscription_repository import SubscriptionRepository
from backoffice.subscriptions.errors import SubscriptionError
from backoffice.subscriptions.service import SubscriptionService

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """'Café Roma #2' -> 'caf-roma-2'"""
    return _SLUG_STRIP.sub("-", value.lower()).strip("-")


class AdminService:
    """
    Back-office operations, one instance per request.

    Usage:
        service = AdminService(db)
        service.toggle_feature(restaurant_id, "delivery_flow", True, actor_id=admin.user_id)
    """

    def __init__(
        self,
        db_session: Session,
        loader: Optional[CatalogLoader] = None,
        locks: Optional[TenantLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.loader = loader or get_catalog_loader()
        self.locks = locks or tenant_locks
        self.resolver = EntitlementResolver(db_session, self.loader)
        self.subscriptions = SubscriptionService(db_session, self.loader.billing, clock=clock)
        self._restaurants = RestaurantRepository(db_session)
        self._plans = RestaurantPlanRepository(db_session)
        self._subscription_repo = SubscriptionRepository(db_session)

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except (EntitlementError, SubscriptionError):
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Persistence failure", extra={
                "operation": operation,
                "error": str(e),
                "error_type": type(e).__name__,
            })
            raise PersistenceError(operation, e) from e

    @contextmanager
    def _tenant_mutation(self, tenant_id: str, operation: str) -> Iterator[Restaurant]:
        """Serialise one tenant's mutation and run it in one transaction."""
        with self.locks.hold(tenant_id):
            with self._transaction(operation):
                restaurant = self._restaurants.get_for_update(tenant_id)
                if restaurant is None:
                    raise RestaurantNotFoundError(tenant_id)
                yield restaurant

    def _require_restaurant(self, tenant_id: str) -> Restaurant:
        restaurant = self._restaurants.get(tenant_id)
        if restaurant is None:
            raise RestaurantNotFoundError(tenant_id)
        return restaurant

    # ------------------------------------------------------------------
    # Catalog & dashboard
    # ------------------------------------------------------------------

    def get_catalog(self) -> Dict:
        return self.loader.to_dict()

    def get_dashboard(self) -> Dict:
        by_status = self._subscription_repo.count_by_status()
        by_tier = self._plans.count_by_tier()
        servable = {s.value for s in SERVABLE_STATUSES}
        return {
            "total_restaurants": self._restaurants.count(),
            "active_restaurants": sum(c for s, c in by_status.items() if s in servable),
            "subscriptions_by_status": {
                s.value: by_status.get(s.value, 0) for s in SubscriptionStatus
            },
            "plan_breakdown": [
                {"plan_tier": plan.tier.value, "count": by_tier.get(plan.tier.value, 0)}
                for plan in self.loader.plans.all()
            ],
        }

    # ------------------------------------------------------------------
    # Restaurants
    # ------------------------------------------------------------------

    def _restaurant_dict(self, restaurant: Restaurant) -> Dict:
        subscription = restaurant.subscription
        return {
            "id": restaurant.id,
            "name": restaurant.name,
            "slug": restaurant.slug,
            "address": restaurant.address,
            "phone": restaurant.phone,
            "timezone": restaurant.timezone,
            "owner_id": restaurant.owner_id,
            "delivery_enabled": bool(restaurant.delivery_enabled),
            "pickup_enabled": bool(restaurant.pickup_enabled),
            "created_at": restaurant.created_at.isoformat() if restaurant.created_at else None,
            "plan": restaurant.plan.to_dict() if restaurant.plan else None,
            "subscription_status": subscription.status if subscription else None,
        }

    def list_restaurants(self, search: Optional[str] = None) -> List[Dict]:
        return [self._restaurant_dict(r) for r in self._restaurants.search(search)]

    def get_restaurant(self, tenant_id: str) -> Dict:
        """Restaurant with plan, stored feature rows and effective features."""
        with self.locks.hold(tenant_id):
            with self._transaction("get_restaurant"):
                restaurant = self._require_restaurant(tenant_id)
                features = [f.to_dict() for f in self.resolver.get_feature_states(tenant_id)]
                effective = self.resolver.effective_features(tenant_id)
                payload = self._restaurant_dict(restaurant)
        payload["features"] = features
        payload["effective_features"] = [
            k for k in self.loader.catalog.keys() if k in effective
        ]
        return payload

    def onboard_restaurant(
        self,
        name: str,
        plan_tier: str,
        actor_id: Optional[str],
        slug: Optional[str] = None,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        timezone: Optional[str] = None,
        owner_id: Optional[str] = None,
        trial_ends_at: Optional[datetime] = None,
    ) -> Dict:
        """
        Create a restaurant, seed its feature rows from the plan and start
        its trial subscription, all in one transaction.

        Raises:
            UnknownPlanError: before anything is written
            DuplicateSlugError: slug already taken
        """
        plan = self.loader.plans.get(plan_tier)
        slug = slugify(slug or name) or f"restaurant-{uuid.uuid4().hex[:8]}"

        try:
            with self._transaction("onboard_restaurant"):
                if self._restaurants.get_by_slug(slug) is not None:
                    raise DuplicateSlugError(slug)
                restaurant = self._restaurants.create(Restaurant(
                    name=name,
                    slug=slug,
                    address=address,
                    phone=phone,
                    timezone=timezone or "UTC",
                    owner_id=owner_id,
                    delivery_enabled="delivery_flow" in plan.included_features,
                    pickup_enabled=True,
                ))
                restaurant_plan = self.resolver.apply_plan(restaurant.id, plan.tier.value, actor_id)
                subscription = self.subscriptions.create_trial(
                    restaurant.id,
                    plan.tier.value,
                    actor_id=actor_id,
                    trial_ends_at=trial_ends_at,
                )
                restaurant_plan.trial_ends_at = subscription.trial_ends_at
        except PersistenceError as e:
            # Concurrent onboarding of the same slug loses on the unique index
            if isinstance(e.cause, IntegrityError):
                raise DuplicateSlugError(slug) from e
            raise

        logger.info("Restaurant onboarded", extra={
            "tenant_id": restaurant.id,
            "slug": slug,
            "plan_tier": plan.tier.value,
            "actor_id": actor_id,
        })
        self.db.refresh(restaurant)
        return self._restaurant_dict(restaurant)

    # ------------------------------------------------------------------
    # Features & plans
    # ------------------------------------------------------------------

    def get_features(self, tenant_id: str) -> List[Dict]:
        with self._tenant_mutation(tenant_id, "get_features"):
            rows = self.resolver.get_feature_states(tenant_id)
            return [row.to_dict() for row in rows]

    def toggle_feature(
        self,
        tenant_id: str,
        feature_key: str,
        enabled: bool,
        actor_id: Optional[str],
    ) -> List[Dict]:
        with self._tenant_mutation(tenant_id, "toggle_feature"):
            rows = self.resolver.toggle(tenant_id, feature_key, enabled, actor_id)
            return [row.to_dict() for row in rows]

    def set_plan(self, tenant_id: str, plan_tier: str, actor_id: Optional[str]) -> Dict:
        # Unknown tiers are rejected before the tenant lock is taken
        self.loader.plans.get(plan_tier)
        with self._tenant_mutation(tenant_id, "set_plan"):
            restaurant_plan = self.resolver.apply_plan(tenant_id, plan_tier, actor_id)
            self.subscriptions.change_plan_tier(tenant_id, restaurant_plan.plan_tier, actor_id)
            return restaurant_plan.to_dict()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def list_subscriptions(self, status: Optional[str] = None) -> List[Dict]:
        result = []
        for subscription in self._subscription_repo.list_all(status):
            payload = subscription.to_dict()
            payload["restaurant_name"] = subscription.restaurant.name
            payload["restaurant_slug"] = subscription.restaurant.slug
            result.append(payload)
        return result

    def get_subscription(self, tenant_id: str) -> Dict:
        self._require_restaurant(tenant_id)
        return self.subscriptions.get_with_events(tenant_id)

    def activate_subscription(self, tenant_id: str, actor_id: Optional[str]) -> None:
        with self._tenant_mutation(tenant_id, "activate_subscription"):
            self.subscriptions.activate(tenant_id, actor_id)

    def deactivate_subscription(self, tenant_id: str, actor_id: Optional[str]) -> None:
        with self._tenant_mutation(tenant_id, "deactivate_subscription"):
            self.subscriptions.deactivate(tenant_id, actor_id)

    def cancel_subscription(self, tenant_id: str, actor_id: Optional[str]) -> None:
        with self._tenant_mutation(tenant_id, "cancel_subscription"):
            self.subscriptions.cancel(tenant_id, actor_id)

    def ingest_payment(
        self,
        tenant_id: str,
        succeeded: bool,
        external_event_id: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        card_brand: Optional[str] = None,
        card_last_four: Optional[str] = None,
    ) -> Dict:
        try:
            with self._tenant_mutation(tenant_id, "ingest_payment"):
                subscription, processed = self.subscriptions.record_payment(
                    tenant_id,
                    succeeded,
                    external_event_id=external_event_id,
                    amount=amount,
                    currency=currency,
                    card_brand=card_brand,
                    card_last_four=card_last_four,
                )
                status = subscription.status
        except PersistenceError as e:
            # A redelivery racing the first delivery loses on the unique
            # external_event_id index; it is still a duplicate.
            if external_event_id and isinstance(e.cause, IntegrityError):
                subscription = self.subscriptions.get(tenant_id)
                return {"processed": False, "status": subscription.status}
            raise
        return {"processed": processed, "status": status}
