"""
Tests for EntitlementResolver.

Tests cover:
- Plan application seeds every catalog row and clears overrides
- Toggle dependency rules (reject-and-report, no cascade)
- Always-on features
- Effective features per subscription status
- Row backfill and repair
- Tenant isolation
"""

import pytest

from backoffice.entitlements.errors import (
    AlwaysOnImmutableError,
    DependencyUnsatisfiedError,
    DependentStillEnabledError,
    RestaurantNotFoundError,
    UnknownFeatureError,
    UnknownPlanError,
)
from backoffice.models.restaurant_feature import RestaurantFeature


def enabled_rows(db_session, tenant_id):
    rows = (
        db_session.query(RestaurantFeature)
        .filter(RestaurantFeature.tenant_id == tenant_id)
        .all()
    )
    return {r.feature_key for r in rows if r.enabled}


def row_snapshot(db_session, tenant_id):
    """{feature_key: (enabled, overridden_by)} for every stored row."""
    db_session.expire_all()
    rows = (
        db_session.query(RestaurantFeature)
        .filter(RestaurantFeature.tenant_id == tenant_id)
        .all()
    )
    return {r.feature_key: (bool(r.enabled), r.overridden_by) for r in rows}


@pytest.fixture
def resolver(admin_service):
    return admin_service.resolver


# =============================================================================
# Plan application
# =============================================================================

class TestApplyPlan:

    def test_onboarding_seeds_every_catalog_row(self, onboard, db_session, catalog_loader):
        tenant_id = onboard(plan_tier="starter")

        count = db_session.query(RestaurantFeature).filter_by(tenant_id=tenant_id).count()
        assert count == len(catalog_loader.catalog)
        assert enabled_rows(db_session, tenant_id) == {
            "pos", "menu_management", "pickup_flow", "push_notif",
        }

    def test_enterprise_then_starter_resets_overrides(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="starter")
        admin_service.toggle_feature(tenant_id, "receipt_printing", True, actor_id="admin-1")

        admin_service.set_plan(tenant_id, "enterprise", actor_id="admin-1")
        assert len(enabled_rows(db_session, tenant_id)) == 17

        admin_service.set_plan(tenant_id, "starter", actor_id="admin-1")
        assert enabled_rows(db_session, tenant_id) == {
            "pos", "menu_management", "pickup_flow", "push_notif",
        }
        overridden = (
            db_session.query(RestaurantFeature)
            .filter(RestaurantFeature.tenant_id == tenant_id)
            .filter(RestaurantFeature.overridden_by.isnot(None))
            .count()
        )
        assert overridden == 0

    def test_enterprise_restores_disabled_core_feature(self, onboard, admin_service, db_session, catalog_loader):
        tenant_id = onboard(plan_tier="starter")
        admin_service.toggle_feature(tenant_id, "menu_management", False, actor_id="admin-1")
        assert "menu_management" not in enabled_rows(db_session, tenant_id)

        admin_service.set_plan(tenant_id, "enterprise", actor_id="admin-1")

        assert enabled_rows(db_session, tenant_id) == catalog_loader.plans.enabled_keys_for("enterprise")

    def test_apply_plan_is_idempotent(self, onboard, resolver, db_session):
        tenant_id = onboard(plan_tier="premium")

        resolver.apply_plan(tenant_id, "premium", actor="admin-1")
        first = enabled_rows(db_session, tenant_id)
        resolver.apply_plan(tenant_id, "premium", actor="admin-1")

        assert enabled_rows(db_session, tenant_id) == first

    def test_apply_plan_updates_restaurant_plan(self, onboard, resolver, catalog_loader):
        tenant_id = onboard(plan_tier="starter")

        restaurant_plan = resolver.apply_plan(tenant_id, "enterprise", actor="admin-1")

        assert restaurant_plan.plan_tier == "enterprise"
        assert restaurant_plan.order_limit == catalog_loader.plans.get("enterprise").order_limit

    def test_unknown_tier(self, onboard, resolver):
        tenant_id = onboard()
        with pytest.raises(UnknownPlanError):
            resolver.apply_plan(tenant_id, "platinum", actor="admin-1")

    def test_unknown_restaurant(self, resolver, catalog_loader):
        with pytest.raises(RestaurantNotFoundError):
            resolver.apply_plan("missing", "starter", actor="admin-1")


# =============================================================================
# Toggle
# =============================================================================

class TestToggle:

    def test_enable_with_dependency_met(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="starter")

        rows = admin_service.toggle_feature(tenant_id, "receipt_printing", True, actor_id="admin-7")

        row = next(r for r in rows if r["feature_key"] == "receipt_printing")
        assert row["enabled"] is True
        assert row["overridden_by"] == "admin-7"
        assert "receipt_printing" in enabled_rows(db_session, tenant_id)

    def test_toggle_changes_only_target_row(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="starter")
        admin_service.toggle_feature(tenant_id, "menu_management", False, actor_id="admin-2")
        before = row_snapshot(db_session, tenant_id)

        admin_service.toggle_feature(tenant_id, "receipt_printing", True, actor_id="admin-7")
        after = row_snapshot(db_session, tenant_id)

        changed = {key for key in after if after[key] != before[key]}
        assert changed == {"receipt_printing"}
        assert after["receipt_printing"] == (True, "admin-7")
        assert after["menu_management"] == (False, "admin-2")

    def test_disable_dependency_still_required(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="starter")
        admin_service.toggle_feature(tenant_id, "receipt_printing", True, actor_id="admin-1")
        before = enabled_rows(db_session, tenant_id)

        with pytest.raises(DependentStillEnabledError) as exc_info:
            admin_service.toggle_feature(tenant_id, "pos", False, actor_id="admin-1")

        assert exc_info.value.to_dict()["enabled_dependents"] == ["receipt_printing"]
        assert enabled_rows(db_session, tenant_id) == before

    def test_enable_with_dependency_missing(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="starter")
        before = enabled_rows(db_session, tenant_id)

        with pytest.raises(DependencyUnsatisfiedError) as exc_info:
            admin_service.toggle_feature(tenant_id, "suggestions", True, actor_id="admin-1")

        assert exc_info.value.missing == ["advanced_analytics"]
        assert exc_info.value.http_status == 409
        assert enabled_rows(db_session, tenant_id) == before

    def test_no_cascade_on_disable(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="premium")
        admin_service.toggle_feature(tenant_id, "receipt_printing", False, actor_id="admin-1")
        admin_service.toggle_feature(tenant_id, "advanced_analytics", False, actor_id="admin-1")

        admin_service.toggle_feature(tenant_id, "pos", False, actor_id="admin-1")

        enabled = enabled_rows(db_session, tenant_id)
        assert "pos" not in enabled
        assert "menu_management" in enabled

    def test_toggle_to_current_value_records_actor(self, onboard, admin_service):
        tenant_id = onboard(plan_tier="starter")

        rows = admin_service.toggle_feature(tenant_id, "pos", True, actor_id="admin-9")

        row = next(r for r in rows if r["feature_key"] == "pos")
        assert row["enabled"] is True
        assert row["overridden_by"] == "admin-9"

    def test_unknown_feature(self, onboard, admin_service):
        tenant_id = onboard()
        with pytest.raises(UnknownFeatureError):
            admin_service.toggle_feature(tenant_id, "teleportation", True, actor_id="admin-1")

    def test_unknown_restaurant(self, admin_service):
        with pytest.raises(RestaurantNotFoundError):
            admin_service.toggle_feature("missing", "pos", True, actor_id="admin-1")

    def test_rows_returned_in_catalog_order(self, onboard, admin_service, catalog_loader):
        tenant_id = onboard()

        rows = admin_service.toggle_feature(tenant_id, "pos", True, actor_id="admin-1")

        assert [r["feature_key"] for r in rows] == catalog_loader.catalog.keys()


class TestAlwaysOn:

    @pytest.mark.parametrize("desired", [True, False])
    def test_always_on_cannot_be_toggled(self, onboard, admin_service, desired):
        tenant_id = onboard()

        with pytest.raises(AlwaysOnImmutableError):
            admin_service.toggle_feature(tenant_id, "pickup_flow", desired, actor_id="admin-1")

    def test_always_on_satisfies_dependencies(self, onboard, admin_service, db_session):
        tenant_id = onboard(plan_tier="starter")

        admin_service.toggle_feature(tenant_id, "delivery_flow", True, actor_id="admin-1")

        assert "delivery_flow" in enabled_rows(db_session, tenant_id)

    def test_disabled_always_on_row_is_repaired(self, onboard, admin_service, db_session):
        tenant_id = onboard()
        row = db_session.query(RestaurantFeature).filter_by(
            tenant_id=tenant_id, feature_key="pickup_flow",
        ).one()
        row.enabled = False
        db_session.commit()

        rows = admin_service.get_features(tenant_id)

        assert next(r for r in rows if r["feature_key"] == "pickup_flow")["enabled"] is True


# =============================================================================
# Effective features
# =============================================================================

class TestEffectiveFeatures:

    def test_trial_serves_stored_state(self, onboard, resolver):
        tenant_id = onboard(plan_tier="starter")

        assert resolver.effective_features(tenant_id) == frozenset({
            "pos", "menu_management", "pickup_flow", "push_notif",
        })

    def test_deactivated_serves_nothing(self, onboard, admin_service, resolver):
        tenant_id = onboard(plan_tier="premium")
        admin_service.deactivate_subscription(tenant_id, actor_id="admin-1")

        assert resolver.effective_features(tenant_id) == frozenset()

    def test_reactivation_restores_same_set(self, onboard, admin_service, resolver):
        tenant_id = onboard(plan_tier="starter")
        admin_service.toggle_feature(tenant_id, "receipt_printing", True, actor_id="admin-1")
        before = resolver.effective_features(tenant_id)

        admin_service.deactivate_subscription(tenant_id, actor_id="admin-1")
        assert resolver.effective_features(tenant_id) == frozenset()

        admin_service.activate_subscription(tenant_id, actor_id="admin-1")
        assert resolver.effective_features(tenant_id) == before

    def test_cancelled_serves_nothing(self, onboard, admin_service, resolver):
        tenant_id = onboard()
        admin_service.cancel_subscription(tenant_id, actor_id="admin-1")

        assert resolver.effective_features(tenant_id) == frozenset()

    def test_unknown_restaurant(self, resolver):
        with pytest.raises(RestaurantNotFoundError):
            resolver.effective_features("missing")

    def test_read_does_not_write(self, onboard, resolver, db_session):
        tenant_id = onboard()
        db_session.query(RestaurantFeature).filter_by(
            tenant_id=tenant_id, feature_key="qr_dine_in",
        ).delete()
        db_session.commit()

        resolver.effective_features(tenant_id)

        assert not db_session.new
        assert not db_session.dirty


# =============================================================================
# Backfill & isolation
# =============================================================================

class TestBackfill:

    def test_missing_rows_are_backfilled_disabled(self, onboard, admin_service, db_session, catalog_loader):
        tenant_id = onboard(plan_tier="starter")
        db_session.query(RestaurantFeature).filter_by(
            tenant_id=tenant_id, feature_key="qr_dine_in",
        ).delete()
        db_session.commit()

        rows = admin_service.get_features(tenant_id)

        assert len(rows) == len(catalog_loader.catalog)
        qr = next(r for r in rows if r["feature_key"] == "qr_dine_in")
        assert qr["enabled"] is False
        assert qr["overridden_by"] is None

    def test_tenants_are_isolated(self, onboard, admin_service, db_session):
        tenant_a = onboard("Falafel House", "starter")
        tenant_b = onboard("Shawarma King", "starter")

        admin_service.toggle_feature(tenant_a, "receipt_printing", True, actor_id="admin-1")

        assert "receipt_printing" in enabled_rows(db_session, tenant_a)
        assert "receipt_printing" not in enabled_rows(db_session, tenant_b)
