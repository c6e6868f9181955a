"""
Per-tenant feature state.

One row per (tenant, feature key). Rows are seeded in bulk from a plan and
mutated one at a time by toggles. overridden_by is NULL while the row still
reflects the plan default.
"""

from sqlalchemy import Boolean, Column, String, UniqueConstraint
from sqlalchemy.orm import relationship

from backoffice.models.base import (
    Base, TimestampMixin, TenantScopedMixin, generate_uuid,
)


class RestaurantFeature(Base, TimestampMixin, TenantScopedMixin):
    """Enabled/disabled state of one catalog feature for one restaurant."""

    __tablename__ = "restaurant_features"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    feature_key = Column(
        String(64),
        nullable=False,
        index=True,
        comment="Catalog feature key"
    )
    enabled = Column(Boolean, nullable=False, default=False)
    overridden_by = Column(
        String(255),
        nullable=True,
        comment="Actor who last toggled this row; NULL = plan default"
    )

    restaurant = relationship("Restaurant", back_populates="features")

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "feature_key",
            name="uq_restaurant_features_tenant_feature",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RestaurantFeature(tenant_id={self.tenant_id}, "
            f"feature_key={self.feature_key}, enabled={self.enabled})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "restaurant_id": self.tenant_id,
            "feature_key": self.feature_key,
            "enabled": bool(self.enabled),
            "overridden_by": self.overridden_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
