"""
Subscription lifecycle service.

Applies state-machine transitions to persisted subscriptions. Every status
change flushes the subscription (optimistic version check) and appends
exactly one SubscriptionEvent. The caller owns the transaction: this service
flushes but never commits.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from backoffice.entitlements.audit import MutationAuditEvent, log_mutation
from backoffice.entitlements.loader import BillingPolicy
from backoffice.models.base import utcnow
from backoffice.models.subscription import Subscription, SubscriptionStatus
from backoffice.models.subscription_event import SubscriptionEvent, SubscriptionEventType
from backoffice.repositories.subscription_repository import (
    SubscriptionEventRepository,
    SubscriptionRepository,
)
from backoffice.subscriptions.errors import (
    InvalidTransitionError,
    SubscriptionNotFoundError,
)
from backoffice.subscriptions.state_machine import Transition, Trigger, next_transition

logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Owns subscription status and history.

    Usage:
        service = SubscriptionService(db, loader.billing)
        service.activate(tenant_id, actor_id="admin-1")
        db.commit()
    """

    def __init__(
        self,
        db_session,
        billing: BillingPolicy,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.billing = billing
        self._clock = clock or utcnow
        self.subscriptions = SubscriptionRepository(db_session)
        self.events = SubscriptionEventRepository(db_session)

    def _now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, tenant_id: str) -> Subscription:
        subscription = self.subscriptions.get_for_tenant(tenant_id)
        if subscription is None:
            raise SubscriptionNotFoundError(tenant_id)
        return subscription

    def get_with_events(self, tenant_id: str) -> dict:
        """Subscription dict with its history, newest event first."""
        subscription = self.get(tenant_id)
        payload = subscription.to_dict()
        payload["events"] = [e.to_dict() for e in self.events.list_for_tenant(tenant_id)]
        return payload

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_trial(
        self,
        tenant_id: str,
        plan_tier: str,
        actor_id: Optional[str] = None,
        trial_ends_at: Optional[datetime] = None,
    ) -> Subscription:
        """Start a tenant's subscription in trial."""
        now = self._now()
        subscription = Subscription(
            tenant_id=tenant_id,
            status=SubscriptionStatus.TRIAL.value,
            plan_tier=plan_tier,
            trial_ends_at=trial_ends_at or now + timedelta(days=self.billing.trial_days),
        )
        self.subscriptions.create(subscription)
        self.events.append(
            subscription,
            SubscriptionEventType.TRIAL_STARTED,
            actor_id=actor_id,
            created_at=now,
        )
        return subscription

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        subscription: Subscription,
        trigger: Trigger,
        actor_id: Optional[str],
        now: datetime,
    ) -> Transition:
        try:
            return next_transition(
                subscription.status,
                trigger,
                renewal_due=subscription.is_renewal_due(now),
                grace_expired=subscription.is_grace_expired(now),
            )
        except InvalidTransitionError as e:
            log_mutation(MutationAuditEvent(
                action="subscription_transition",
                tenant_id=subscription.tenant_id,
                actor_id=actor_id,
                outcome="rejected",
                from_status=subscription.status,
                error_code=e.error_code,
                extra_metadata={"trigger": trigger.value},
            ))
            raise

    def _apply(
        self,
        subscription: Subscription,
        transition: Transition,
        actor_id: Optional[str],
        now: datetime,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        external_event_id: Optional[str] = None,
    ) -> SubscriptionEvent:
        subscription.status = transition.to_status.value

        if transition.to_status is SubscriptionStatus.PAST_DUE:
            subscription.grace_period_until = now + timedelta(days=self.billing.grace_period_days)
        elif transition.to_status is SubscriptionStatus.ACTIVE:
            subscription.grace_period_until = None
            if transition.is_payment or subscription.current_period_end is None:
                subscription.current_period_start = now
                subscription.current_period_end = now + timedelta(days=self.billing.period_days)

        self.subscriptions.save(subscription)
        event = self.events.append(
            subscription,
            transition.event_type,
            actor_id=actor_id,
            amount=amount,
            currency=currency,
            external_event_id=external_event_id,
            created_at=now,
        )

        logger.info("Subscription transitioned", extra={
            "tenant_id": subscription.tenant_id,
            "subscription_id": subscription.id,
            "from_status": transition.from_status.value,
            "to_status": transition.to_status.value,
            "trigger": transition.trigger.value,
        })
        log_mutation(MutationAuditEvent(
            action="subscription_transition",
            tenant_id=subscription.tenant_id,
            actor_id=actor_id,
            from_status=transition.from_status.value,
            to_status=transition.to_status.value,
            extra_metadata={"trigger": transition.trigger.value},
        ))
        return event

    def _admin_trigger(self, tenant_id: str, trigger: Trigger, actor_id: Optional[str]) -> Subscription:
        subscription = self.get(tenant_id)
        now = self._now()
        transition = self._transition(subscription, trigger, actor_id, now)
        self._apply(subscription, transition, actor_id, now)
        return subscription

    def activate(self, tenant_id: str, actor_id: Optional[str] = None) -> Subscription:
        return self._admin_trigger(tenant_id, Trigger.ADMIN_ACTIVATE, actor_id)

    def deactivate(self, tenant_id: str, actor_id: Optional[str] = None) -> Subscription:
        return self._admin_trigger(tenant_id, Trigger.ADMIN_DEACTIVATE, actor_id)

    def cancel(self, tenant_id: str, actor_id: Optional[str] = None) -> Subscription:
        return self._admin_trigger(tenant_id, Trigger.CANCEL, actor_id)

    def record_payment(
        self,
        tenant_id: str,
        succeeded: bool,
        external_event_id: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        card_brand: Optional[str] = None,
        card_last_four: Optional[str] = None,
        actor_id: Optional[str] = "billing_gateway",
    ) -> Tuple[Subscription, bool]:
        """
        Apply a payment outcome from the billing gateway.

        Idempotent on external_event_id: a redelivered event returns the
        subscription unchanged with processed=False.

        Returns:
            (subscription, processed)
        """
        subscription = self.get(tenant_id)

        if external_event_id and self.events.get_by_external_id(external_event_id):
            logger.info("Duplicate payment event ignored", extra={
                "tenant_id": tenant_id,
                "external_event_id": external_event_id,
            })
            return subscription, False

        now = self._now()
        trigger = Trigger.PAYMENT_SUCCEEDED if succeeded else Trigger.PAYMENT_FAILED
        transition = self._transition(subscription, trigger, actor_id, now)

        if succeeded and card_last_four:
            subscription.card_brand = card_brand
            subscription.card_last_four = card_last_four

        self._apply(
            subscription,
            transition,
            actor_id,
            now,
            amount=amount,
            currency=currency or self.billing.currency,
            external_event_id=external_event_id,
        )
        return subscription, True

    def expire_grace(self, subscription: Subscription, actor_id: str = "grace_period_job") -> bool:
        """
        Deactivate one past_due subscription whose grace has elapsed.

        Returns False when the subscription no longer qualifies (paid or
        already handled since it was selected).
        """
        now = self._now()
        if not subscription.is_grace_expired(now):
            return False
        transition = self._transition(subscription, Trigger.GRACE_EXPIRED, actor_id, now)
        self._apply(subscription, transition, actor_id, now)
        return True

    def expired_grace_candidates(self) -> List[Subscription]:
        return self.subscriptions.get_past_due_with_expired_grace(self._now())

    # ------------------------------------------------------------------
    # Plan alignment
    # ------------------------------------------------------------------

    def change_plan_tier(
        self,
        tenant_id: str,
        plan_tier: str,
        actor_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """
        Keep Subscription.plan_tier aligned with the applied plan.

        Not a status transition. Writes a plan_changed event only when the
        tier actually changes. Returns None if the tenant has no subscription.
        """
        subscription = self.subscriptions.get_for_tenant(tenant_id)
        if subscription is None:
            return None
        if subscription.plan_tier == plan_tier:
            return subscription

        previous = subscription.plan_tier
        subscription.plan_tier = plan_tier
        self.subscriptions.save(subscription)
        self.events.append(
            subscription,
            SubscriptionEventType.PLAN_CHANGED,
            actor_id=actor_id,
            created_at=self._now(),
        )

        logger.info("Subscription plan tier changed", extra={
            "tenant_id": tenant_id,
            "from_tier": previous,
            "to_tier": plan_tier,
        })
        return subscription
