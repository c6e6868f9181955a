"""
Catalog loader - load features, plans and billing policy from config/catalog.yml.

Provides:
- BillingPolicy: trial / grace / period lengths and currency
- CatalogLoader: thread-safe singleton holding the FeatureCatalog and PlanRegistry

CRITICAL: catalog.yml is the source of truth for feature entitlements.
Do NOT hardcode feature access elsewhere.

Usage:
    from backoffice.entitlements.loader import get_catalog_loader

    loader = get_catalog_loader()
    loader.catalog.get("pos")
    loader.plans.get("premium").included_features
    loader.billing.grace_period_days
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

from backoffice.entitlements.catalog import (
    FeatureCatalog, FeatureCategory, FeatureDefinition,
)
from backoffice.entitlements.errors import CatalogConfigurationError
from backoffice.entitlements.plans import PlanDefinition, PlanRegistry, PlanTier

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "CATALOG_CONFIG_PATH"


@dataclass(frozen=True)
class BillingPolicy:
    """Billing lengths used by the subscription state machine."""

    trial_days: int = 14
    grace_period_days: int = 7
    period_days: int = 30
    currency: str = "ILS"


class CatalogLoader:
    """
    Singleton loader for config/catalog.yml.

    Built once; the catalog and registry it exposes are immutable, so readers
    never need to synchronise. A construction failure propagates and the
    singleton is left unset.
    """

    _instance: Optional["CatalogLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._initialized = False
                    instance._init_lock = Lock()
                    cls._instance = instance
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        with self._init_lock:
            if self._initialized:
                return
            self._config_path = config_path
            self._raw: Dict[str, Any] = {}
            try:
                self._load()
            except Exception:
                # Do not leave a half-built singleton behind
                CatalogLoader._instance = None
                raise
            self._initialized = True

    # ------------------------------------------------------------------
    # Config resolution
    # ------------------------------------------------------------------

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        env_path = os.getenv(CONFIG_PATH_ENV)
        if env_path:
            return Path(env_path)

        candidates = [
            Path(__file__).parent.parent / "config" / "catalog.yml",  # backoffice/config/
            Path(os.getcwd()) / "config" / "catalog.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"catalog.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        path = self._resolve_path()
        logger.info("Loading feature catalog from %s", path)

        with open(path, "r") as f:
            self._raw = yaml.safe_load(f) or {}

        if not isinstance(self._raw, dict):
            raise CatalogConfigurationError(f"{path} must contain a mapping")

        self._catalog = FeatureCatalog(self._parse_features())
        self._plans = PlanRegistry(self._parse_plans(), self._catalog)
        self._billing = self._parse_billing()

        logger.info(
            "Loaded %d features and %d plans",
            len(self._catalog),
            len(self._plans.all()),
        )

    def _parse_features(self):
        definitions = []
        for index, item in enumerate(self._raw.get("features") or []):
            key = item.get("key")
            if not key:
                raise CatalogConfigurationError(f"Feature #{index} has no key")
            try:
                category = FeatureCategory(item.get("category"))
            except ValueError:
                raise CatalogConfigurationError(
                    f"Feature '{key}' has invalid category '{item.get('category')}'"
                ) from None
            definitions.append(FeatureDefinition(
                key=key,
                category=category,
                requires_all=frozenset(item.get("requires_all") or []),
                always_on=bool(item.get("always_on", False)),
                label=item.get("label", ""),
                description=item.get("description", ""),
            ))
        if not definitions:
            raise CatalogConfigurationError("Catalog defines no features")
        return definitions

    def _parse_plans(self):
        plans = []
        for item in self._raw.get("plans") or []:
            tier = item.get("tier")
            try:
                plan_tier = PlanTier(tier)
            except ValueError:
                raise CatalogConfigurationError(f"Unknown plan tier '{tier}'") from None
            order_limit = item.get("order_limit", 0)
            if not isinstance(order_limit, int):
                raise CatalogConfigurationError(
                    f"Plan '{tier}' order_limit must be an integer"
                )
            plans.append(PlanDefinition(
                tier=plan_tier,
                included_features=frozenset(item.get("features") or []),
                order_limit=order_limit,
                name=item.get("name", ""),
                price=str(item.get("price", "")),
                period=item.get("period", ""),
                description=item.get("description", ""),
            ))
        return plans

    def _parse_billing(self) -> BillingPolicy:
        data = self._raw.get("billing") or {}
        policy = BillingPolicy(
            trial_days=data.get("trial_days", 14),
            grace_period_days=data.get("grace_period_days", 7),
            period_days=data.get("period_days", 30),
            currency=data.get("currency", "ILS"),
        )
        for name in ("trial_days", "grace_period_days", "period_days"):
            value = getattr(policy, name)
            if not isinstance(value, int) or value <= 0:
                raise CatalogConfigurationError(f"billing.{name} must be a positive integer")
        return policy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def catalog(self) -> FeatureCatalog:
        return self._catalog

    @property
    def plans(self) -> PlanRegistry:
        return self._plans

    @property
    def billing(self) -> BillingPolicy:
        return self._billing

    def to_dict(self) -> dict:
        """Serialisable catalog for the admin console."""
        return {
            "features": [d.to_dict() for d in self._catalog.all()],
            "plans": [p.to_dict(self._catalog) for p in self._plans.all()],
        }


# ------------------------------------------------------------------
# Module-level accessors
# ------------------------------------------------------------------

def get_catalog_loader(config_path: Optional[str] = None) -> CatalogLoader:
    """Return the singleton CatalogLoader."""
    return CatalogLoader(config_path)


def reset_catalog_loader() -> None:
    """Reset singleton (for tests only)."""
    CatalogLoader._instance = None
