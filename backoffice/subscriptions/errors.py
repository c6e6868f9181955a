"""Subscription lifecycle errors."""

from fastapi import status


class SubscriptionError(Exception):
    """Base exception for subscription errors."""

    error_code = "subscription_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
        }


class SubscriptionNotFoundError(SubscriptionError):
    error_code = "subscription_not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"No subscription for restaurant '{tenant_id}'")


class InvalidTransitionError(SubscriptionError):
    """
    Trigger not allowed from the current status.

    Raised before anything is written: no status change, no event.
    """

    error_code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, from_status: str, trigger: str, reason: str = ""):
        self.from_status = from_status
        self.trigger = trigger
        message = f"Cannot apply '{trigger}' to a subscription in status '{from_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "from_status": self.from_status,
            "trigger": self.trigger,
        }
