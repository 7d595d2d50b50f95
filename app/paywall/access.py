"""
Decision только: чистые функции над (EntitlementState, now, AccessPolicy).
Без I/O и сети. Истечение подписки вычисляется при чтении, а не фоновой задачей:
просроченный платный tier читается как free.
"""
from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Iterable

from app.paywall.models import (
    AccessContext,
    AccessDecision,
    AccessPolicy,
    EntitlementState,
    Tier,
)

logger = logging.getLogger(__name__)

VARIANT_PREFIX = "variant:"
SECONDS_PER_DAY = 86400


def is_premium(state: EntitlementState, now: datetime) -> bool:
    if state.tier == Tier.FREE or state.expires_at is None:
        return False
    return now < state.expires_at


def current_tier(state: EntitlementState, now: datetime) -> Tier:
    if not is_premium(state, now):
        return Tier.FREE
    return state.tier


def days_remaining(state: EntitlementState, now: datetime, cap: int = 999) -> int:
    """Whole days left, rounded up and clamped to [0, cap]. 0 without expiry."""
    if state.expires_at is None:
        return 0
    seconds = (state.expires_at - now).total_seconds()
    days = math.ceil(seconds / SECONDS_PER_DAY)
    return max(0, min(days, cap))


def can_access_gated_content(state: EntitlementState, now: datetime, policy: AccessPolicy) -> bool:
    if is_premium(state, now):
        return True
    return bool(policy.free_access_rule(now))


def can_access_variant(
    state: EntitlementState,
    now: datetime,
    variant_id: str,
    policy: AccessPolicy,
) -> bool:
    if variant_id.strip().lower() in policy.free_variants:
        return True
    return is_premium(state, now)


def accessible_variants(
    state: EntitlementState,
    now: datetime,
    all_variants: Iterable[str],
    policy: AccessPolicy,
) -> list[str]:
    """Variants the user may open, preserving input order."""
    return [v for v in all_variants if can_access_variant(state, now, v, policy)]


def filter_accessible_dates(
    state: EntitlementState,
    now: datetime,
    dates: Iterable[date],
    policy: AccessPolicy,
) -> list[date]:
    """
    Dated content visible to the user: everything for premium, otherwise only
    the dates on which the free access rule holds (e.g. Sunday items).
    """
    if is_premium(state, now):
        return list(dates)
    # Plain dates are matched by their own calendar day, no time-zone shift
    return [d for d in dates if policy.free_access_rule(d)]


def decide_access(ctx: AccessContext, policy: AccessPolicy) -> AccessDecision:
    """
    Решает, открыта ли функция пользователю.

    - variant:<id> -> allow-list вариантов для free, иначе premium
    - feature из calendar_gated_features -> premium или правило бесплатного дня
    - всё остальное -> только premium
    """
    state, now = ctx.state, ctx.now
    premium = is_premium(state, now)
    tier = state.tier if premium else Tier.FREE
    left = days_remaining(state, now, policy.days_remaining_cap) if premium else 0

    if premium:
        return AccessDecision(allowed=True, reason="premium", tier=tier, days_remaining=left)

    feature_id = ctx.feature_id
    if feature_id.startswith(VARIANT_PREFIX):
        variant_id = feature_id[len(VARIANT_PREFIX):]
        if can_access_variant(state, now, variant_id, policy):
            return AccessDecision(allowed=True, reason="free_variant", tier=tier)
        return AccessDecision(allowed=False, reason="premium_required", tier=tier)

    if feature_id in policy.calendar_gated_features and policy.free_access_rule(now):
        return AccessDecision(allowed=True, reason="free_access_day", tier=tier)

    return AccessDecision(allowed=False, reason="premium_required", tier=tier)
