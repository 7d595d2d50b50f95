"""
Paywall config — типизированная обёртка над app.core.config для политики доступа.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.paywall.models import AccessPolicy


def get_days_per_month() -> int:
    return settings.subscription_days_per_month


def get_days_remaining_cap() -> int:
    return settings.days_remaining_cap


def weekday_rule(weekday: int | None, tz_name: str = "UTC") -> Callable[[date | datetime], bool]:
    """
    Free access on one weekday (Monday=0 ... Sunday=6). Moments are converted to
    the given time zone; plain dates use their own calendar weekday.
    """
    if weekday is None:
        return lambda now: False
    tz = ZoneInfo(tz_name)

    def rule(moment: date | datetime) -> bool:
        if not isinstance(moment, datetime):
            return moment.weekday() == weekday
        local = moment.astimezone(tz) if moment.tzinfo else moment
        return local.weekday() == weekday

    return rule


def build_access_policy() -> AccessPolicy:
    return AccessPolicy(
        free_access_rule=weekday_rule(settings.free_access_weekday, settings.free_access_timezone),
        free_variants=settings.free_variants_set,
        calendar_gated_features=settings.calendar_gated_features_set,
        days_remaining_cap=settings.days_remaining_cap,
    )
