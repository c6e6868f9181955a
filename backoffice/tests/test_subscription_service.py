"""
Tests for SubscriptionService.

Tests cover:
- Trial creation and trial_started event
- Payment-driven transitions and billing period handling
- Grace window on failed renewal and expiry
- Idempotent payment ingestion
- Rejected transitions write nothing
- Plan-tier alignment
"""

from datetime import timedelta

import pytest

from backoffice.models.base import ensure_utc
from backoffice.models.subscription_event import SubscriptionEvent
from backoffice.subscriptions.errors import (
    InvalidTransitionError,
    SubscriptionNotFoundError,
)


@pytest.fixture
def service(admin_service):
    return admin_service.subscriptions


def event_types(db_session, tenant_id):
    rows = (
        db_session.query(SubscriptionEvent)
        .filter(SubscriptionEvent.tenant_id == tenant_id)
        .order_by(SubscriptionEvent.created_at.asc())
        .all()
    )
    return [r.event_type for r in rows]


class TestCreateTrial:

    def test_onboarding_starts_trial(self, onboard, service, db_session, catalog_loader, clock):
        start = clock.now
        tenant_id = onboard(plan_tier="premium")

        subscription = service.get(tenant_id)
        assert subscription.status == "trial"
        assert subscription.plan_tier == "premium"
        trial_days = catalog_loader.billing.trial_days
        assert ensure_utc(subscription.trial_ends_at) >= start + timedelta(days=trial_days)
        assert event_types(db_session, tenant_id) == ["trial_started"]

    def test_explicit_trial_end(self, onboard, service, clock):
        ends = clock.now + timedelta(days=3)
        tenant_id = onboard(trial_ends_at=ends)

        assert ensure_utc(service.get(tenant_id).trial_ends_at) == ends

    def test_get_missing_subscription(self, service):
        with pytest.raises(SubscriptionNotFoundError):
            service.get("no-such-tenant")


class TestPayments:

    def test_first_payment_activates_and_starts_period(self, onboard, service, db_session, catalog_loader):
        tenant_id = onboard()

        subscription, processed = service.record_payment(
            tenant_id, succeeded=True, external_event_id="evt_1",
            amount=14900, card_brand="visa", card_last_four="4242",
        )
        db_session.commit()

        assert processed is True
        assert subscription.status == "active"
        assert subscription.card_last_four == "4242"
        period = ensure_utc(subscription.current_period_end) - ensure_utc(subscription.current_period_start)
        assert period == timedelta(days=catalog_loader.billing.period_days)
        assert event_types(db_session, tenant_id) == ["trial_started", "payment_succeeded"]

        event = db_session.query(SubscriptionEvent).filter_by(external_event_id="evt_1").one()
        assert event.amount == 14900
        assert event.currency == catalog_loader.billing.currency

    def test_duplicate_event_is_ignored(self, onboard, service, db_session):
        tenant_id = onboard()
        service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")
        db_session.commit()

        subscription, processed = service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")

        assert processed is False
        assert subscription.status == "active"
        assert event_types(db_session, tenant_id).count("payment_succeeded") == 1

    def test_renewal_payment_extends_period(self, onboard, service, db_session, clock):
        tenant_id = onboard()
        subscription, _ = service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")
        first_end = ensure_utc(subscription.current_period_end)
        db_session.commit()

        clock.advance(days=30)
        subscription, _ = service.record_payment(tenant_id, succeeded=True, external_event_id="evt_2")
        db_session.commit()

        assert subscription.status == "active"
        assert ensure_utc(subscription.current_period_end) > first_end

    def test_failed_renewal_enters_grace(self, onboard, service, db_session, clock, catalog_loader):
        tenant_id = onboard()
        service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")
        db_session.commit()

        clock.advance(days=31)
        failed_at = clock.now
        subscription, _ = service.record_payment(tenant_id, succeeded=False, external_event_id="evt_2")
        db_session.commit()

        assert subscription.status == "past_due"
        grace = timedelta(days=catalog_loader.billing.grace_period_days)
        assert ensure_utc(subscription.grace_period_until) == failed_at + grace
        assert subscription.allows_access

    def test_failed_payment_before_renewal_due_rejected(self, onboard, service, db_session):
        tenant_id = onboard()
        service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")
        db_session.commit()

        with pytest.raises(InvalidTransitionError):
            service.record_payment(tenant_id, succeeded=False, external_event_id="evt_2")
        db_session.rollback()

        assert service.get(tenant_id).status == "active"
        assert "payment_failed" not in event_types(db_session, tenant_id)

    def test_payment_within_grace_recovers(self, onboard, service, db_session, clock):
        tenant_id = onboard()
        service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")
        clock.advance(days=31)
        service.record_payment(tenant_id, succeeded=False, external_event_id="evt_2")
        db_session.commit()

        clock.advance(days=2)
        subscription, _ = service.record_payment(tenant_id, succeeded=True, external_event_id="evt_3")
        db_session.commit()

        assert subscription.status == "active"
        assert subscription.grace_period_until is None

    def test_trial_payment_failure_is_invalid(self, onboard, service):
        tenant_id = onboard()

        with pytest.raises(InvalidTransitionError):
            service.record_payment(tenant_id, succeeded=False)


class TestGraceExpiry:

    def _past_due(self, onboard, service, db_session, clock):
        tenant_id = onboard()
        service.record_payment(tenant_id, succeeded=True, external_event_id="evt_1")
        clock.advance(days=31)
        service.record_payment(tenant_id, succeeded=False, external_event_id="evt_2")
        db_session.commit()
        return tenant_id

    def test_expire_after_grace(self, onboard, service, db_session, clock):
        tenant_id = self._past_due(onboard, service, db_session, clock)
        clock.advance(days=8)

        assert service.expire_grace(service.get(tenant_id)) is True
        db_session.commit()

        subscription = service.get(tenant_id)
        assert subscription.status == "deactivated"
        assert not subscription.allows_access
        assert event_types(db_session, tenant_id)[-1] == "grace_period_expired"

    def test_expire_during_grace_is_noop(self, onboard, service, db_session, clock):
        tenant_id = self._past_due(onboard, service, db_session, clock)
        clock.advance(days=1)

        assert service.expire_grace(service.get(tenant_id)) is False
        assert service.get(tenant_id).status == "past_due"

    def test_payment_after_grace_rejected(self, onboard, service, db_session, clock):
        tenant_id = self._past_due(onboard, service, db_session, clock)
        clock.advance(days=8)

        with pytest.raises(InvalidTransitionError):
            service.record_payment(tenant_id, succeeded=True, external_event_id="evt_3")


class TestAdminTransitions:

    def test_deactivate_then_activate(self, onboard, service, db_session):
        tenant_id = onboard()

        service.deactivate(tenant_id, actor_id="admin-1")
        db_session.commit()
        assert service.get(tenant_id).status == "deactivated"

        service.activate(tenant_id, actor_id="admin-1")
        db_session.commit()
        assert service.get(tenant_id).status == "active"
        assert event_types(db_session, tenant_id) == ["trial_started", "deactivated", "activated"]

    def test_double_deactivate_rejected_without_event(self, onboard, service, db_session):
        tenant_id = onboard()
        service.deactivate(tenant_id)
        db_session.commit()

        with pytest.raises(InvalidTransitionError):
            service.deactivate(tenant_id)
        db_session.rollback()

        assert event_types(db_session, tenant_id) == ["trial_started", "deactivated"]

    def test_cancelled_rejects_everything(self, onboard, service, db_session):
        tenant_id = onboard()
        service.cancel(tenant_id)
        db_session.commit()

        for action in (service.activate, service.deactivate, service.cancel):
            with pytest.raises(InvalidTransitionError):
                action(tenant_id)
        with pytest.raises(InvalidTransitionError):
            service.record_payment(tenant_id, succeeded=True)

    def test_version_increments_on_each_transition(self, onboard, service, db_session):
        tenant_id = onboard()
        before = service.get(tenant_id).version

        service.activate(tenant_id)
        db_session.commit()

        assert service.get(tenant_id).version == before + 1


class TestPlanTierAlignment:

    def test_change_writes_plan_changed(self, onboard, service, db_session):
        tenant_id = onboard(plan_tier="starter")

        service.change_plan_tier(tenant_id, "enterprise", actor_id="admin-1")
        db_session.commit()

        assert service.get(tenant_id).plan_tier == "enterprise"
        assert service.get(tenant_id).status == "trial"
        assert event_types(db_session, tenant_id)[-1] == "plan_changed"

    def test_same_tier_writes_nothing(self, onboard, service, db_session):
        tenant_id = onboard(plan_tier="starter")

        service.change_plan_tier(tenant_id, "starter")
        db_session.commit()

        assert event_types(db_session, tenant_id) == ["trial_started"]

    def test_history_newest_first(self, onboard, service, db_session):
        tenant_id = onboard()
        service.activate(tenant_id)
        service.deactivate(tenant_id)
        db_session.commit()

        history = service.get_with_events(tenant_id)

        assert [e["event_type"] for e in history["events"]] == [
            "deactivated", "activated", "trial_started",
        ]
