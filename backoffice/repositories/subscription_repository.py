"""
Subscription repository for data access operations.

Encapsulates all database operations for subscriptions with:
- Tenant isolation enforcement
- Consistent query patterns
- Append-only event history
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.models.base import utcnow
from backoffice.models.subscription import Subscription, SubscriptionStatus
from backoffice.models.subscription_event import SubscriptionEvent

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    All per-tenant methods enforce tenant isolation via tenant_id parameter.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_for_tenant(self, tenant_id: str) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.tenant_id == tenant_id
        ).first()

    def list_all(self, status: Optional[str] = None) -> List[Subscription]:
        """All subscriptions, optionally filtered by status, newest first."""
        query = self.db.query(Subscription)
        if status:
            query = query.filter(Subscription.status == status)
        return query.order_by(Subscription.created_at.desc()).all()

    def get_past_due_with_expired_grace(
        self, now: Optional[datetime] = None
    ) -> List[Subscription]:
        """
        Past-due subscriptions whose grace window has elapsed.

        Used by the grace-period expiry job.
        """
        now = now or utcnow()
        return self.db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.PAST_DUE.value,
            Subscription.grace_period_until.isnot(None),
            Subscription.grace_period_until <= now,
        ).all()

    def count_by_status(self) -> Dict[str, int]:
        rows = (
            self.db.query(Subscription.status, func.count(Subscription.id))
            .group_by(Subscription.status)
            .all()
        )
        return {status: count for status, count in rows}

    def create(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self.db.flush()

        logger.info("Subscription created", extra={
            "subscription_id": subscription.id,
            "tenant_id": subscription.tenant_id,
            "plan_tier": subscription.plan_tier,
        })

        return subscription

    def save(self, subscription: Subscription) -> Subscription:
        """Flush pending changes; a stale version raises StaleDataError here."""
        self.db.add(subscription)
        self.db.flush()
        return subscription


class SubscriptionEventRepository:
    """
    Repository for subscription history.

    Append-only - no update or delete operations.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def append(
        self,
        subscription: Subscription,
        event_type: str,
        actor_id: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        external_event_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> SubscriptionEvent:
        last = self.db.query(func.max(SubscriptionEvent.sequence)).filter(
            SubscriptionEvent.tenant_id == subscription.tenant_id
        ).scalar()
        event = SubscriptionEvent(
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            event_type=event_type,
            actor_id=actor_id,
            amount=amount,
            currency=currency,
            external_event_id=external_event_id,
            created_at=created_at or utcnow(),
            sequence=(last or 0) + 1,
        )
        self.db.add(event)
        self.db.flush()

        logger.info("Subscription event recorded", extra={
            "tenant_id": subscription.tenant_id,
            "subscription_id": subscription.id,
            "event_type": event_type,
        })

        return event

    def get_by_external_id(self, external_event_id: str) -> Optional[SubscriptionEvent]:
        return self.db.query(SubscriptionEvent).filter(
            SubscriptionEvent.external_event_id == external_event_id
        ).first()

    def list_for_tenant(self, tenant_id: str, limit: int = 100) -> List[SubscriptionEvent]:
        """Events of a tenant, newest first."""
        return (
            self.db.query(SubscriptionEvent)
            .filter(SubscriptionEvent.tenant_id == tenant_id)
            .order_by(SubscriptionEvent.created_at.desc(), SubscriptionEvent.sequence.desc())
            .limit(limit)
            .all()
        )
