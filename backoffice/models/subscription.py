"""
Subscription model for tracking restaurant billing lifecycle.

CRITICAL: One subscription per restaurant.
Status is only ever changed through the subscription state machine
(backoffice.subscriptions.service); the entitlement resolver reads it.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column, String, Integer, DateTime, Enum, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from backoffice.models.base import (
    Base, TimestampMixin, TenantScopedMixin, generate_uuid, ensure_utc, utcnow,
)
from backoffice.models.restaurant import PLAN_TIERS


class SubscriptionStatus(str, enum.Enum):
    """Subscription status values."""
    TRIAL = "trial"               # New tenant, trial running
    ACTIVE = "active"             # Paid and current
    PAST_DUE = "past_due"         # Renewal payment failed, in grace period
    DEACTIVATED = "deactivated"   # Grace elapsed or admin deactivation
    CANCELLED = "cancelled"       # Terminal


# Statuses under which entitlements are served
SERVABLE_STATUSES = frozenset({
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
})


class Subscription(Base, TimestampMixin, TenantScopedMixin):
    """
    Billing subscription of a restaurant.

    CRITICAL DESIGN:
    - ONE subscription per restaurant
    - version column gives optimistic locking: a concurrent stale write
      raises StaleDataError on flush
    - Every status change appends exactly one SubscriptionEvent
    """

    __tablename__ = "subscriptions"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    status = Column(
        Enum(
            "trial", "active", "past_due", "deactivated", "cancelled",
            name="subscription_status"
        ),
        default="trial",
        nullable=False,
        index=True,
        comment="Current subscription status"
    )
    plan_tier = Column(
        Enum(*PLAN_TIERS, name="subscription_plan_tier"),
        nullable=False,
        comment="Plan tier being billed"
    )

    # Payment method summary (opaque to the engine)
    card_brand = Column(String(32), nullable=True)
    card_last_four = Column(String(4), nullable=True)

    # Billing dates
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Renewal is due once this passes"
    )
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    grace_period_until = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of grace window after a failed payment"
    )

    version = Column(Integer, nullable=False, default=1)

    restaurant = relationship("Restaurant", back_populates="subscription")
    events = relationship(
        "SubscriptionEvent",
        back_populates="subscription",
        lazy="dynamic",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_subscriptions_tenant"),
        Index("ix_subscriptions_status_grace", "status", "grace_period_until"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"

    @property
    def status_enum(self) -> SubscriptionStatus:
        return SubscriptionStatus(self.status)

    @property
    def allows_access(self) -> bool:
        """Check if subscription allows feature access."""
        return self.status_enum in SERVABLE_STATUSES

    def is_grace_expired(self, now: Optional[datetime] = None) -> bool:
        """True once a past_due subscription's grace window has elapsed."""
        if self.status != SubscriptionStatus.PAST_DUE.value:
            return False
        until = ensure_utc(self.grace_period_until)
        if until is None:
            return False
        return (now or utcnow()) >= until

    def is_renewal_due(self, now: Optional[datetime] = None) -> bool:
        period_end = ensure_utc(self.current_period_end)
        if period_end is None:
            return True
        return (now or utcnow()) >= period_end

    def to_dict(self) -> dict:
        def _iso(value):
            value = ensure_utc(value)
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "restaurant_id": self.tenant_id,
            "status": self.status,
            "plan_tier": self.plan_tier,
            "card_brand": self.card_brand,
            "card_last_four": self.card_last_four,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "trial_ends_at": _iso(self.trial_ends_at),
            "grace_period_until": _iso(self.grace_period_until),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
