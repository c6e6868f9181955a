"""
Subscription state machine.

Pure transition function: given the current status, a trigger and the two
time-dependent guards, returns the target status and the event type to
append, or raises InvalidTransitionError. No I/O happens here; the
subscription service applies the result.

    trial ──payment_succeeded/admin_activate──▶ active
    active ──payment_failed (renewal due)──▶ past_due
    past_due ──payment_succeeded (within grace)──▶ active
    past_due ──grace_expired──▶ deactivated
    trial/active/past_due ──admin_deactivate──▶ deactivated
    deactivated ──admin_activate──▶ active
    any non-cancelled ──cancel──▶ cancelled
"""

import enum
from dataclasses import dataclass
from typing import Dict, Tuple

from backoffice.models.subscription import SubscriptionStatus
from backoffice.models.subscription_event import SubscriptionEventType
from backoffice.subscriptions.errors import InvalidTransitionError


class Trigger(str, enum.Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    GRACE_EXPIRED = "grace_expired"
    ADMIN_ACTIVATE = "admin_activate"
    ADMIN_DEACTIVATE = "admin_deactivate"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition:
    from_status: SubscriptionStatus
    to_status: SubscriptionStatus
    event_type: str
    trigger: Trigger

    @property
    def is_payment(self) -> bool:
        return self.trigger is Trigger.PAYMENT_SUCCEEDED


_S = SubscriptionStatus

VALID_TRANSITIONS: Dict[Tuple[SubscriptionStatus, Trigger], Tuple[SubscriptionStatus, str]] = {
    (_S.TRIAL, Trigger.PAYMENT_SUCCEEDED): (_S.ACTIVE, SubscriptionEventType.PAYMENT_SUCCEEDED),
    (_S.TRIAL, Trigger.ADMIN_ACTIVATE): (_S.ACTIVE, SubscriptionEventType.ACTIVATED),
    (_S.TRIAL, Trigger.ADMIN_DEACTIVATE): (_S.DEACTIVATED, SubscriptionEventType.DEACTIVATED),
    (_S.TRIAL, Trigger.CANCEL): (_S.CANCELLED, SubscriptionEventType.CANCELLED),

    (_S.ACTIVE, Trigger.PAYMENT_FAILED): (_S.PAST_DUE, SubscriptionEventType.PAYMENT_FAILED),
    # Renewal: status unchanged, billing period extended
    (_S.ACTIVE, Trigger.PAYMENT_SUCCEEDED): (_S.ACTIVE, SubscriptionEventType.PAYMENT_SUCCEEDED),
    (_S.ACTIVE, Trigger.ADMIN_DEACTIVATE): (_S.DEACTIVATED, SubscriptionEventType.DEACTIVATED),
    (_S.ACTIVE, Trigger.CANCEL): (_S.CANCELLED, SubscriptionEventType.CANCELLED),

    (_S.PAST_DUE, Trigger.PAYMENT_SUCCEEDED): (_S.ACTIVE, SubscriptionEventType.PAYMENT_SUCCEEDED),
    (_S.PAST_DUE, Trigger.GRACE_EXPIRED): (_S.DEACTIVATED, SubscriptionEventType.GRACE_PERIOD_EXPIRED),
    (_S.PAST_DUE, Trigger.ADMIN_DEACTIVATE): (_S.DEACTIVATED, SubscriptionEventType.DEACTIVATED),
    (_S.PAST_DUE, Trigger.CANCEL): (_S.CANCELLED, SubscriptionEventType.CANCELLED),

    (_S.DEACTIVATED, Trigger.ADMIN_ACTIVATE): (_S.ACTIVE, SubscriptionEventType.ACTIVATED),
    (_S.DEACTIVATED, Trigger.CANCEL): (_S.CANCELLED, SubscriptionEventType.CANCELLED),
}


def next_transition(
    current: str,
    trigger: Trigger,
    renewal_due: bool = True,
    grace_expired: bool = False,
) -> Transition:
    """
    Resolve (current status, trigger) to a Transition.

    Args:
        current: current status value
        trigger: what happened
        renewal_due: the current billing period has ended (guards payment_failed)
        grace_expired: the past_due grace window has elapsed

    Raises:
        InvalidTransitionError: pair not in the table, or a guard fails
    """
    trigger = Trigger(trigger)
    try:
        status = SubscriptionStatus(current)
    except ValueError:
        raise InvalidTransitionError(str(current), trigger.value, "unknown status") from None

    target = VALID_TRANSITIONS.get((status, trigger))
    if target is None:
        raise InvalidTransitionError(status.value, trigger.value)

    if status is _S.ACTIVE and trigger is Trigger.PAYMENT_FAILED and not renewal_due:
        raise InvalidTransitionError(status.value, trigger.value, "renewal is not due yet")
    if status is _S.PAST_DUE and trigger is Trigger.PAYMENT_SUCCEEDED and grace_expired:
        raise InvalidTransitionError(status.value, trigger.value, "grace period has elapsed")
    if status is _S.PAST_DUE and trigger is Trigger.GRACE_EXPIRED and not grace_expired:
        raise InvalidTransitionError(status.value, trigger.value, "grace period still running")

    to_status, event_type = target
    return Transition(
        from_status=status,
        to_status=to_status,
        event_type=event_type,
        trigger=trigger,
    )


def allowed_triggers(current: str) -> list:
    """Triggers the table accepts from a status, ignoring time guards."""
    status = SubscriptionStatus(current)
    return [trigger for (from_status, trigger) in VALID_TRANSITIONS if from_status is status]
