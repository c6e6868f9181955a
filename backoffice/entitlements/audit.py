"""
Entitlement audit logging - one structured line per mutation or rejection.

Fields on every event:
- action (feature_toggled, plan_applied, subscription_transition, ...)
- tenant_id
- actor_id
- outcome (applied / rejected)

Events go to the dedicated "entitlements.audit" logger so deployments can
route them to a separate sink.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Dedicated audit logger for structured logging
audit_logger = logging.getLogger("entitlements.audit")


@dataclass
class MutationAuditEvent:
    """Structured record of an admin or billing mutation attempt."""

    action: str
    tenant_id: str
    actor_id: Optional[str] = None
    outcome: str = "applied"
    feature_key: Optional[str] = None
    plan_tier: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    extra_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, {})}


def log_mutation(event: MutationAuditEvent) -> None:
    """Emit one audit line; rejections are logged at WARNING."""
    level = logging.INFO if event.outcome == "applied" else logging.WARNING
    audit_logger.log(
        level,
        "entitlement_mutation",
        extra={"audit_event": event.to_dict()},
    )
