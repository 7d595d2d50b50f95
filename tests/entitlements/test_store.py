"""Tests for EntitlementStore: activation, idempotent re-apply, cancel, tolerant load."""
from datetime import datetime, timezone

import pytest

from app.models.entitlement import EntitlementValue
from app.paywall.access import current_tier, days_remaining
from app.paywall.catalog import load_catalog
from app.paywall.models import Tier
from app.services.entitlements.store import EXPIRY_KEY, TIER_KEY, EntitlementStore


@pytest.fixture
def catalog():
    return load_catalog()


def test_empty_store_is_free(db):
    state = EntitlementStore(db).load("u1")
    assert state.tier == Tier.FREE
    assert state.expires_at is None


def test_activate_six_months(db, catalog, fixed_now):
    store = EntitlementStore(db)
    state, changed = store.activate("u1", catalog.get("six_months"), "SUB_1", fixed_now)
    db.commit()

    assert changed is True
    assert state.tier == Tier.T2
    assert state.expires_at == datetime(2024, 6, 29, 12, 0, tzinfo=timezone.utc)
    assert days_remaining(state, fixed_now) == 180

    loaded = store.load("u1")
    assert loaded == state
    assert current_tier(loaded, fixed_now) == Tier.T2


def test_reapply_same_reference_is_noop(db, catalog, fixed_now):
    store = EntitlementStore(db)
    first, _ = store.activate("u1", catalog.get("three_months"), "SUB_1", fixed_now)
    later = datetime(2024, 2, 1, tzinfo=timezone.utc)
    second, changed = store.activate("u1", catalog.get("three_months"), "SUB_1", later)

    assert changed is False
    assert second.expires_at == first.expires_at


def test_new_reference_replaces_state(db, catalog, fixed_now):
    store = EntitlementStore(db)
    store.activate("u1", catalog.get("three_months"), "SUB_1", fixed_now)
    state, changed = store.activate("u1", catalog.get("yearly"), "SUB_2", fixed_now)

    assert changed is True
    assert state.tier == Tier.T3
    assert store.load("u1").reference == "SUB_2"
    assert db.query(EntitlementValue).filter_by(user_id="u1").count() == 4


def test_free_plan_cannot_be_activated(db, catalog, fixed_now):
    with pytest.raises(ValueError):
        EntitlementStore(db).activate("u1", catalog.get("free"), "SUB_1", fixed_now)


def test_cancel_reverts_to_free(db, catalog, fixed_now):
    store = EntitlementStore(db)
    store.activate("u1", catalog.get("yearly"), "SUB_1", fixed_now)
    state = store.cancel("u1")
    db.commit()

    assert state.tier == Tier.FREE
    loaded = store.load("u1")
    assert loaded.tier == Tier.FREE
    assert loaded.expires_at is None
    assert loaded.reference is None


def test_users_are_isolated(db, catalog, fixed_now):
    store = EntitlementStore(db)
    store.activate("u1", catalog.get("yearly"), "SUB_1", fixed_now)
    assert store.load("u2").tier == Tier.FREE


def test_unknown_tier_reads_free(db):
    db.add(EntitlementValue(user_id="u1", key=TIER_KEY, value="platinum"))
    db.add(EntitlementValue(user_id="u1", key=EXPIRY_KEY, value="2030-01-01T00:00:00+00:00"))
    db.flush()
    assert EntitlementStore(db).load("u1").tier == Tier.FREE


def test_paid_tier_without_expiry_reads_free(db):
    db.add(EntitlementValue(user_id="u1", key=TIER_KEY, value="t2"))
    db.flush()
    assert EntitlementStore(db).load("u1").tier == Tier.FREE
