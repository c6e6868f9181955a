"""
Restaurant and RestaurantPlan repository.

The restaurants row is the per-tenant lock target: get_for_update() takes a
row lock that serialises every mutation of one tenant across processes.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from backoffice.models.restaurant import Restaurant, RestaurantPlan

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    """Treat % and _ in user input as literals."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RestaurantRepository:
    """
    Repository for restaurant (tenant) records.

    Not tenant-scoped: it is the lookup the tenant scope starts from.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, tenant_id: str) -> Optional[Restaurant]:
        return self.db.query(Restaurant).filter(Restaurant.id == tenant_id).first()

    def get_for_update(self, tenant_id: str) -> Optional[Restaurant]:
        """
        Load the restaurant row with SELECT ... FOR UPDATE.

        Held until the surrounding transaction commits or rolls back.
        SQLite ignores the clause; the in-process TenantLockRegistry covers it.
        """
        return (
            self.db.query(Restaurant)
            .filter(Restaurant.id == tenant_id)
            .with_for_update()
            .first()
        )

    def get_by_slug(self, slug: str) -> Optional[Restaurant]:
        return self.db.query(Restaurant).filter(Restaurant.slug == slug).first()

    def search(self, search: Optional[str] = None, limit: int = 200) -> List[Restaurant]:
        """
        List restaurants, optionally filtered by a case-insensitive
        substring of name or slug.
        """
        query = self.db.query(Restaurant)
        if search:
            pattern = f"%{_escape_like(search.strip().lower())}%"
            query = query.filter(or_(
                func.lower(Restaurant.name).like(pattern, escape="\\"),
                func.lower(Restaurant.slug).like(pattern, escape="\\"),
            ))
        return query.order_by(Restaurant.name.asc()).limit(limit).all()

    def count(self) -> int:
        return self.db.query(func.count(Restaurant.id)).scalar() or 0

    def create(self, restaurant: Restaurant) -> Restaurant:
        self.db.add(restaurant)
        self.db.flush()

        logger.info("Restaurant created", extra={
            "tenant_id": restaurant.id,
            "slug": restaurant.slug,
        })

        return restaurant


class RestaurantPlanRepository:
    """Repository for the per-tenant plan row (one per tenant)."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, tenant_id: str) -> Optional[RestaurantPlan]:
        return self.db.query(RestaurantPlan).filter(
            RestaurantPlan.tenant_id == tenant_id
        ).first()

    def upsert(
        self,
        tenant_id: str,
        plan_tier: str,
        order_limit: int,
    ) -> RestaurantPlan:
        plan = self.get(tenant_id)
        if plan is None:
            plan = RestaurantPlan(tenant_id=tenant_id, plan_tier=plan_tier, order_limit=order_limit)
            self.db.add(plan)
        else:
            plan.plan_tier = plan_tier
            plan.order_limit = order_limit
        self.db.flush()
        return plan

    def count_by_tier(self) -> Dict[str, int]:
        rows = (
            self.db.query(RestaurantPlan.plan_tier, func.count(RestaurantPlan.id))
            .group_by(RestaurantPlan.plan_tier)
            .all()
        )
        return {tier: count for tier, count in rows}
