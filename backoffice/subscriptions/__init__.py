"""Subscription lifecycle: state machine, service and errors."""

from backoffice.subscriptions.errors import (
    InvalidTransitionError,
    SubscriptionError,
    SubscriptionNotFoundError,
)
from backoffice.subscriptions.service import SubscriptionService
from backoffice.subscriptions.state_machine import (
    Transition,
    Trigger,
    VALID_TRANSITIONS,
    next_transition,
)

__all__ = [
    "InvalidTransitionError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "SubscriptionService",
    "Transition",
    "Trigger",
    "VALID_TRANSITIONS",
    "next_transition",
]
