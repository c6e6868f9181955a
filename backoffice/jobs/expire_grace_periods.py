"""
Grace-period expiry job.

Deactivates every past_due subscription whose grace window has elapsed.
One-shot: run from cron (e.g. every 15 minutes). Each subscription is
expired in its own transaction so one failure does not block the rest.

Usage:
    python -m backoffice.jobs.expire_grace_periods
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.entitlements.errors import RestaurantNotFoundError
from backoffice.entitlements.loader import CatalogLoader, get_catalog_loader
from backoffice.entitlements.locking import TenantLockRegistry, tenant_locks
from backoffice.repositories.restaurant_repository import RestaurantRepository
from backoffice.subscriptions.errors import InvalidTransitionError
from backoffice.subscriptions.service import SubscriptionService

logger = logging.getLogger(__name__)

JOB_ACTOR = "grace_period_job"


class GraceExpiryStats:
    """Track expiry run statistics."""

    def __init__(self):
        self.candidates = 0
        self.deactivated = 0
        self.skipped = 0
        self.errors = 0
        self.start_time = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "candidates": self.candidates,
            "deactivated": self.deactivated,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_seconds": duration,
        }


def expire_grace_periods(
    session: Session,
    loader: Optional[CatalogLoader] = None,
    locks: Optional[TenantLockRegistry] = None,
    clock=None,
) -> GraceExpiryStats:
    """
    Drive grace_expired for every qualifying subscription.

    The candidate list is read once; each tenant is then re-checked under
    its lock, so a payment that lands in between wins.
    """
    loader = loader or get_catalog_loader()
    locks = locks or tenant_locks
    service = SubscriptionService(session, loader.billing, clock=clock)
    restaurants = RestaurantRepository(session)
    stats = GraceExpiryStats()

    tenant_ids = [s.tenant_id for s in service.expired_grace_candidates()]
    session.rollback()
    stats.candidates = len(tenant_ids)

    for tenant_id in tenant_ids:
        with locks.hold(tenant_id):
            try:
                if restaurants.get_for_update(tenant_id) is None:
                    raise RestaurantNotFoundError(tenant_id)
                subscription = service.get(tenant_id)
                if service.expire_grace(subscription, actor_id=JOB_ACTOR):
                    session.commit()
                    stats.deactivated += 1
                else:
                    session.rollback()
                    stats.skipped += 1
            except (InvalidTransitionError, RestaurantNotFoundError) as e:
                session.rollback()
                stats.skipped += 1
                logger.info("Subscription no longer eligible for expiry", extra={
                    "tenant_id": tenant_id,
                    "reason": e.message,
                })
            except SQLAlchemyError as e:
                session.rollback()
                stats.errors += 1
                logger.error("Failed to expire grace period", extra={
                    "tenant_id": tenant_id,
                    "error": str(e),
                })

    logger.info("Grace-period expiry finished", extra=stats.to_dict())
    return stats


def main():
    """Entry point for running the expiry job from command line."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    from backoffice.database.session import get_db_session_sync

    try:
        for session in get_db_session_sync():
            stats = expire_grace_periods(session)
        print(f"Grace-period expiry completed: {stats.to_dict()}")
        sys.exit(1 if stats.errors else 0)
    except Exception as e:
        logger.exception("Grace-period expiry failed")
        print(f"Grace-period expiry failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
