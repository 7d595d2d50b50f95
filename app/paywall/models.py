"""
DTO paywall: Tier, Plan (catalog entry), EntitlementState, AccessPolicy,
AccessContext (вход decide_access), AccessDecision.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field, model_validator


class Tier(str, Enum):
    """Subscription level, ordered by duration/price."""

    FREE = "free"
    T1 = "t1"
    T2 = "t2"
    T3 = "t3"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = (Tier.FREE, Tier.T1, Tier.T2, Tier.T3)


# ----- Каталог тарифов (неизменяемый, грузится один раз) -----


class Plan(BaseModel):
    """Catalog entry: tier, display name, price (major units), duration in whole months."""

    id: str
    tier: Tier
    name: str
    price: Decimal = Field(..., ge=0)
    duration_months: int = Field(..., ge=0)
    features: tuple[str, ...] = ()
    limitations: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_duration(self) -> "Plan":
        if self.tier == Tier.FREE and self.duration_months != 0:
            raise ValueError(f"free plan {self.id!r} must have duration 0")
        if self.tier != Tier.FREE and self.duration_months <= 0:
            raise ValueError(f"paid plan {self.id!r} must have a positive duration")
        return self

    @property
    def is_free(self) -> bool:
        return self.tier == Tier.FREE

    @property
    def price_per_month(self) -> Decimal:
        if self.duration_months == 0:
            return Decimal("0")
        return (self.price / self.duration_months).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def duration_days(self, days_per_month: int) -> int:
        """Fixed-length months (approximation, not calendar-accurate)."""
        return self.duration_months * days_per_month

    def duration(self, days_per_month: int) -> timedelta:
        return timedelta(days=self.duration_days(days_per_month))


# ----- Состояние подписки (снимок из EntitlementStore) -----


class EntitlementState(BaseModel):
    """
    Stored subscription fields. Tier is the stored value: it may be stale
    after expiry, callers must go through access.current_tier().
    """

    tier: Tier = Tier.FREE
    expires_at: datetime | None = None
    purchased_at: datetime | None = None
    # Transaction reference that produced this state (idempotent re-apply)
    reference: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_expiry(self) -> "EntitlementState":
        if self.tier != Tier.FREE and self.expires_at is None:
            raise ValueError("paid tier requires expires_at")
        return self

    @classmethod
    def free(cls) -> "EntitlementState":
        return cls()


# ----- Политика доступа (данные продукта, а не протокол) -----


@dataclass(frozen=True)
class AccessPolicy:
    """
    Product policy for free users.

    free_access_rule: predicate over the current time or a content date; True = open.
    free_variants: variant ids (lowercase) always available.
    calendar_gated_features: feature ids that follow free_access_rule instead of premium-only.
    """

    free_access_rule: Callable[[date | datetime], bool] = field(default=lambda now: False)
    free_variants: frozenset[str] = frozenset()
    calendar_gated_features: frozenset[str] = frozenset()
    days_remaining_cap: int = 999


# ----- Вход/выход decide_access -----


class AccessContext(BaseModel):
    """Единый контракт входа для decide_access: feature, snapshot состояния, текущее время."""

    feature_id: str
    state: EntitlementState
    now: datetime

    model_config = {"frozen": True}


class AccessDecision(BaseModel):
    """Результат decide_access."""

    allowed: bool
    reason: str = Field(
        ...,
        description="premium | free_access_day | free_variant | premium_required",
    )
    tier: Tier = Field(..., description="Effective tier (free after expiry)")
    days_remaining: int = 0

    model_config = {"frozen": True}
