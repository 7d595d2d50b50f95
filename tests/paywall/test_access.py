"""
Unit-тесты для движка доступа: чистая логика, без БД/сети.
"""
import unittest
from datetime import date, datetime, timedelta, timezone

from app.paywall.access import (
    accessible_variants,
    can_access_gated_content,
    can_access_variant,
    current_tier,
    days_remaining,
    decide_access,
    filter_accessible_dates,
    is_premium,
)
from app.paywall.config import weekday_rule
from app.paywall.models import AccessContext, AccessPolicy, EntitlementState, Tier

# 2024-01-07 is a Sunday, 2024-01-08 a Monday
SUNDAY = datetime(2024, 1, 7, 10, 0, tzinfo=timezone.utc)
MONDAY = datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)

POLICY = AccessPolicy(
    free_access_rule=weekday_rule(6),
    free_variants=frozenset({"asv"}),
    calendar_gated_features=frozenset({"daily_content"}),
    days_remaining_cap=999,
)


def _paid(now: datetime, days: float, tier: Tier = Tier.T2) -> EntitlementState:
    return EntitlementState(tier=tier, expires_at=now + timedelta(days=days), purchased_at=now)


class TestPremium(unittest.TestCase):
    def test_free_state_is_not_premium(self):
        state = EntitlementState.free()
        self.assertFalse(is_premium(state, MONDAY))
        self.assertEqual(current_tier(state, MONDAY), Tier.FREE)

    def test_active_paid_tier(self):
        state = _paid(MONDAY, 10)
        self.assertTrue(is_premium(state, MONDAY))
        self.assertEqual(current_tier(state, MONDAY), Tier.T2)

    def test_expired_paid_tier_reads_as_free(self):
        """Stored tier is stale after expiry; reported tier degrades to free."""
        for tier in (Tier.T1, Tier.T2, Tier.T3):
            state = EntitlementState(
                tier=tier,
                expires_at=MONDAY - timedelta(seconds=1),
                purchased_at=MONDAY - timedelta(days=90),
            )
            self.assertFalse(is_premium(state, MONDAY))
            self.assertEqual(current_tier(state, MONDAY), Tier.FREE)

    def test_expiry_boundary_is_exclusive(self):
        state = EntitlementState(tier=Tier.T1, expires_at=MONDAY)
        self.assertFalse(is_premium(state, MONDAY))
        self.assertTrue(is_premium(state, MONDAY - timedelta(microseconds=1)))

    def test_paid_tier_requires_expiry(self):
        with self.assertRaises(ValueError):
            EntitlementState(tier=Tier.T1)


class TestDaysRemaining(unittest.TestCase):
    def test_no_expiry_is_zero(self):
        self.assertEqual(days_remaining(EntitlementState.free(), MONDAY), 0)

    def test_rounds_partial_day_up(self):
        self.assertEqual(days_remaining(_paid(MONDAY, 2.25), MONDAY), 3)

    def test_exact_days(self):
        self.assertEqual(days_remaining(_paid(MONDAY, 180), MONDAY), 180)

    def test_expired_clamps_to_zero(self):
        self.assertEqual(days_remaining(_paid(MONDAY, -5), MONDAY), 0)

    def test_capped(self):
        self.assertEqual(days_remaining(_paid(MONDAY, 5000), MONDAY, cap=999), 999)
        self.assertEqual(days_remaining(_paid(MONDAY, 180), MONDAY, cap=100), 100)


class TestGatedContent(unittest.TestCase):
    def test_free_user_on_free_day(self):
        self.assertTrue(can_access_gated_content(EntitlementState.free(), SUNDAY, POLICY))

    def test_free_user_on_other_day(self):
        self.assertFalse(can_access_gated_content(EntitlementState.free(), MONDAY, POLICY))

    def test_premium_any_day(self):
        self.assertTrue(can_access_gated_content(_paid(MONDAY, 30), MONDAY, POLICY))

    def test_rule_is_pluggable(self):
        policy = AccessPolicy(free_access_rule=lambda now: now.day == 8)
        self.assertTrue(can_access_gated_content(EntitlementState.free(), MONDAY, policy))
        self.assertFalse(can_access_gated_content(EntitlementState.free(), SUNDAY, policy))

    def test_weekday_rule_uses_time_zone(self):
        # Sunday 23:30 UTC is already Monday in Lagos (UTC+1)
        late_sunday = datetime(2024, 1, 7, 23, 30, tzinfo=timezone.utc)
        self.assertTrue(weekday_rule(6, "UTC")(late_sunday))
        self.assertFalse(weekday_rule(6, "Africa/Lagos")(late_sunday))

    def test_no_free_day(self):
        self.assertFalse(weekday_rule(None)(SUNDAY))


class TestVariants(unittest.TestCase):
    def test_free_variant_always_open(self):
        self.assertTrue(can_access_variant(EntitlementState.free(), MONDAY, "ASV", POLICY))

    def test_other_variant_requires_premium(self):
        self.assertFalse(can_access_variant(EntitlementState.free(), MONDAY, "kjv", POLICY))
        self.assertTrue(can_access_variant(_paid(MONDAY, 1), MONDAY, "kjv", POLICY))

    def test_accessible_variants_keeps_order(self):
        variants = ["KJV", "ASV", "NIV"]
        self.assertEqual(accessible_variants(EntitlementState.free(), MONDAY, variants, POLICY), ["ASV"])
        self.assertEqual(accessible_variants(_paid(MONDAY, 1), MONDAY, variants, POLICY), variants)

    def test_filter_accessible_dates(self):
        dates = [date(2024, 1, 6), date(2024, 1, 7), date(2024, 1, 8)]
        self.assertEqual(
            filter_accessible_dates(EntitlementState.free(), MONDAY, dates, POLICY),
            [date(2024, 1, 7)],
        )
        self.assertEqual(filter_accessible_dates(_paid(MONDAY, 1), MONDAY, dates, POLICY), dates)

    def test_filter_dates_ignores_zone_west_of_utc(self):
        """A content date is Sunday by its calendar day, whatever the rule's time zone."""
        policy = AccessPolicy(free_access_rule=weekday_rule(6, "America/New_York"))
        dates = [date(2024, 1, 6), date(2024, 1, 7), date(2024, 1, 8)]
        self.assertEqual(
            filter_accessible_dates(EntitlementState.free(), MONDAY, dates, policy),
            [date(2024, 1, 7)],
        )


class TestDecideAccess(unittest.TestCase):
    def _decide(self, feature_id, state, now):
        return decide_access(AccessContext(feature_id=feature_id, state=state, now=now), POLICY)

    def test_premium_reason_and_days(self):
        decision = self._decide("downloads", _paid(MONDAY, 30), MONDAY)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, "premium")
        self.assertEqual(decision.tier, Tier.T2)
        self.assertEqual(decision.days_remaining, 30)

    def test_premium_only_feature_denied_for_free(self):
        decision = self._decide("downloads", EntitlementState.free(), SUNDAY)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, "premium_required")

    def test_calendar_feature_on_free_day(self):
        decision = self._decide("daily_content", EntitlementState.free(), SUNDAY)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, "free_access_day")

    def test_calendar_feature_on_other_day(self):
        self.assertFalse(self._decide("daily_content", EntitlementState.free(), MONDAY).allowed)

    def test_variant_feature(self):
        self.assertEqual(self._decide("variant:asv", EntitlementState.free(), MONDAY).reason, "free_variant")
        self.assertFalse(self._decide("variant:niv", EntitlementState.free(), MONDAY).allowed)

    def test_expired_state_reports_free_tier(self):
        decision = self._decide("downloads", _paid(MONDAY, -1, Tier.T3), MONDAY)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.tier, Tier.FREE)
        self.assertEqual(decision.days_remaining, 0)
