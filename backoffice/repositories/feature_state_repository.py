"""
Per-tenant feature state repository.

CRITICAL: Every query is scoped to the repository's tenant_id.
No query can read or write another tenant's feature rows.
"""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from backoffice.models.restaurant_feature import RestaurantFeature

logger = logging.getLogger(__name__)


class TenantIsolationError(Exception):
    """Raised when tenant isolation is violated."""
    pass


class FeatureStateRepository:
    """
    Repository for RestaurantFeature rows of a single tenant.

    Args:
        db_session: SQLAlchemy database session
        tenant_id: Restaurant id the repository is bound to
    """

    def __init__(self, db_session: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required and cannot be empty")

        self.db = db_session
        self.tenant_id = tenant_id

    def _scoped(self):
        return self.db.query(RestaurantFeature).filter(
            RestaurantFeature.tenant_id == self.tenant_id
        )

    def rows_by_key(self) -> Dict[str, RestaurantFeature]:
        """All stored rows of the tenant keyed by feature_key."""
        return {row.feature_key: row for row in self._scoped().all()}

    def enabled_keys(self) -> set:
        rows = (
            self._scoped()
            .with_entities(RestaurantFeature.feature_key)
            .filter(RestaurantFeature.enabled.is_(True))
            .all()
        )
        return {key for (key,) in rows}

    def add(
        self,
        feature_key: str,
        enabled: bool,
        overridden_by: Optional[str] = None,
    ) -> RestaurantFeature:
        row = RestaurantFeature(
            tenant_id=self.tenant_id,
            feature_key=feature_key,
            enabled=enabled,
            overridden_by=overridden_by,
        )
        self.db.add(row)
        return row

    def add_missing(self, keys: Iterable[str], enabled_keys: Iterable[str]) -> int:
        """
        Insert rows for keys the tenant has no row for yet.

        Returns the number of rows inserted. Existing rows are left untouched.
        """
        existing = self.rows_by_key()
        enabled = set(enabled_keys)
        inserted = 0
        for key in keys:
            if key in existing:
                continue
            self.add(key, key in enabled)
            inserted += 1
        if inserted:
            self.db.flush()
            logger.info("Backfilled feature rows", extra={
                "tenant_id": self.tenant_id,
                "inserted": inserted,
            })
        return inserted

    def validate_row(self, row: RestaurantFeature) -> None:
        """
        SECURITY: refuse to write a row loaded for another tenant.
        """
        if row.tenant_id != self.tenant_id:
            logger.error(
                "Tenant ID mismatch detected",
                extra={
                    "repository_tenant_id": self.tenant_id,
                    "row_tenant_id": row.tenant_id,
                    "feature_key": row.feature_key,
                }
            )
            raise TenantIsolationError(
                f"Tenant ID mismatch: repository scoped to {self.tenant_id}, "
                f"but row belongs to {row.tenant_id}"
            )
