"""
Plan registry - read-only tier definitions.

CRITICAL: every plan's included_features must be dependency-closed.
A plan that is not is a catalog authoring error and is rejected when the
registry is built, never tolerated at request time.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List

from backoffice.entitlements.catalog import FeatureCatalog
from backoffice.entitlements.errors import CatalogConfigurationError, UnknownPlanError

logger = logging.getLogger(__name__)


class PlanTier(str, enum.Enum):
    STARTER = "starter"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


# Ascending-capability order the admin console renders plans in
CANONICAL_TIER_ORDER = (PlanTier.STARTER, PlanTier.PREMIUM, PlanTier.ENTERPRISE)


@dataclass(frozen=True)
class PlanDefinition:
    """Feature set and order cap of one tier."""
    tier: PlanTier
    included_features: FrozenSet[str] = field(default_factory=frozenset)
    order_limit: int = 0  # 0 = unlimited
    name: str = ""
    price: str = ""
    period: str = ""
    description: str = ""

    @property
    def is_unlimited(self) -> bool:
        return self.order_limit == 0

    def to_dict(self, catalog: FeatureCatalog) -> dict:
        return {
            "tier": self.tier.value,
            "name": self.name or self.tier.value.title(),
            "price": self.price,
            "period": self.period,
            "description": self.description,
            # Catalog order keeps the console's matrix stable
            "features": [k for k in catalog.keys() if k in self.included_features],
            "order_limit": self.order_limit,
        }


class PlanRegistry:
    """
    Immutable tier → PlanDefinition registry.

    all() always returns starter, premium, enterprise order regardless of the
    order plans were declared in.
    """

    def __init__(self, plans: Iterable[PlanDefinition], catalog: FeatureCatalog):
        self._catalog = catalog
        self._plans: Dict[PlanTier, PlanDefinition] = {}

        for plan in plans:
            if plan.tier in self._plans:
                raise CatalogConfigurationError(f"Duplicate plan tier '{plan.tier.value}'")
            self._validate(plan)
            self._plans[plan.tier] = plan

        missing = [t.value for t in CANONICAL_TIER_ORDER if t not in self._plans]
        if missing:
            raise CatalogConfigurationError(f"Missing plan tier(s): {', '.join(missing)}")

        logger.info("Plan registry built", extra={
            "plans": {t.value: len(p.included_features) for t, p in self._plans.items()},
        })

    def _validate(self, plan: PlanDefinition) -> None:
        unknown = [k for k in plan.included_features if k not in self._catalog]
        if unknown:
            raise CatalogConfigurationError(
                f"Plan '{plan.tier.value}' includes unknown feature(s): {', '.join(sorted(unknown))}"
            )
        if plan.order_limit < 0:
            raise CatalogConfigurationError(
                f"Plan '{plan.tier.value}' has negative order_limit {plan.order_limit}"
            )
        for key in sorted(plan.included_features):
            missing = self._catalog.dependencies_of(key) - plan.included_features
            if missing:
                raise CatalogConfigurationError(
                    f"Plan '{plan.tier.value}' is not dependency-closed: "
                    f"'{key}' requires {', '.join(sorted(missing))}"
                )

    def get(self, tier: str) -> PlanDefinition:
        try:
            return self._plans[PlanTier(tier)]
        except (ValueError, KeyError):
            raise UnknownPlanError(str(tier.value if isinstance(tier, PlanTier) else tier)) from None

    def all(self) -> List[PlanDefinition]:
        return [self._plans[t] for t in CANONICAL_TIER_ORDER]

    def enabled_keys_for(self, tier: str) -> FrozenSet[str]:
        """Keys enabled after applying a tier: plan defaults plus always-on."""
        return self.get(tier).included_features | self._catalog.always_on_keys()
