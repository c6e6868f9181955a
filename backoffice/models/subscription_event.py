"""
SubscriptionEvent model for the immutable billing history.

CRITICAL: This table is APPEND-ONLY.
Never update or delete subscription events - only insert new ones.
"""

from sqlalchemy import (
    Column, String, Integer, DateTime, Enum, ForeignKey, Index,
)
from sqlalchemy.orm import relationship

from backoffice.models.base import (
    Base, TenantScopedMixin, generate_uuid, ensure_utc, utcnow,
)


class SubscriptionEventType:
    """Subscription event type constants."""
    TRIAL_STARTED = "trial_started"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    CANCELLED = "cancelled"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    GRACE_PERIOD_EXPIRED = "grace_period_expired"
    PLAN_CHANGED = "plan_changed"

    ALL = (
        TRIAL_STARTED,
        ACTIVATED,
        DEACTIVATED,
        CANCELLED,
        PAYMENT_SUCCEEDED,
        PAYMENT_FAILED,
        GRACE_PERIOD_EXPIRED,
        PLAN_CHANGED,
    )


class SubscriptionEvent(Base, TenantScopedMixin):
    """
    Immutable history entry of a subscription.

    NOTE: Does not use TimestampMixin - there is no updated_at on an
    append-only row.
    """

    __tablename__ = "subscription_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    subscription_id = Column(
        String(36),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type = Column(
        Enum(*SubscriptionEventType.ALL, name="subscription_event_type"),
        nullable=False,
        index=True,
    )

    # Monetary values (minor units)
    amount = Column(Integer, nullable=True, comment="Amount in minor currency units")
    currency = Column(String(10), nullable=True)

    actor_id = Column(
        String(255),
        nullable=True,
        comment="Admin user id, or job/gateway name"
    )
    external_event_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Payment gateway event id, used for deduplication"
    )
    sequence = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Per-tenant append order; breaks created_at ties"
    )
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    subscription = relationship("Subscription", back_populates="events")

    __table_args__ = (
        Index("ix_subscription_events_tenant_time", "tenant_id", "created_at"),
        Index("ix_subscription_events_tenant_sequence", "tenant_id", "sequence"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionEvent(id={self.id}, type={self.event_type})>"

    def to_dict(self) -> dict:
        created = ensure_utc(self.created_at)
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "event_type": self.event_type,
            "amount": self.amount,
            "currency": self.currency,
            "actor_id": self.actor_id,
            "created_at": created.isoformat() if created else None,
        }
