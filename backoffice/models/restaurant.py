"""
Restaurant (tenant) and RestaurantPlan models.

Restaurant.id IS the tenant_id used by every tenant-scoped table.
RestaurantPlan holds the tenant's current tier and order limit; it is only
written by the entitlement resolver when a plan is applied.
"""

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.orm import relationship

from backoffice.models.base import (
    Base, TimestampMixin, TenantScopedMixin, generate_uuid,
)


PLAN_TIERS = ("starter", "premium", "enterprise")


class Restaurant(Base, TimestampMixin):
    """
    A restaurant account on the platform.

    The row doubles as the per-tenant lock target: every mutation of a
    tenant's feature state or subscription selects it FOR UPDATE first.
    """

    __tablename__ = "restaurants"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    name = Column(String(255), nullable=False)
    slug = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="URL-safe identifier, unique across the platform"
    )
    address = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    owner_id = Column(
        String(255),
        nullable=True,
        comment="Identity of the owning user in the auth system"
    )
    delivery_enabled = Column(Boolean, nullable=False, default=False)
    pickup_enabled = Column(Boolean, nullable=False, default=True)

    plan = relationship(
        "RestaurantPlan",
        uselist=False,
        back_populates="restaurant",
        cascade="all, delete-orphan",
    )
    features = relationship(
        "RestaurantFeature",
        back_populates="restaurant",
        cascade="all, delete-orphan",
    )
    subscription = relationship(
        "Subscription",
        uselist=False,
        back_populates="restaurant",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Restaurant(id={self.id}, slug={self.slug})>"


class RestaurantPlan(Base, TimestampMixin, TenantScopedMixin):
    """Current plan tier and order limit for a restaurant (one per tenant)."""

    __tablename__ = "restaurant_plans"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    plan_tier = Column(
        Enum(*PLAN_TIERS, name="plan_tier"),
        nullable=False,
        comment="Applied plan tier"
    )
    order_limit = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Monthly order cap, 0 = unlimited"
    )
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)

    restaurant = relationship("Restaurant", back_populates="plan")

    __table_args__ = (
        Index("uq_restaurant_plans_tenant", "tenant_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<RestaurantPlan(tenant_id={self.tenant_id}, tier={self.plan_tier})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "restaurant_id": self.tenant_id,
            "plan_tier": self.plan_tier,
            "order_limit": self.order_limit,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
