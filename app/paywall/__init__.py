"""
Централизованный paywall (внутренняя библиотека).
Decision (access) — чистые функции над EntitlementState; хранение в EntitlementStore.
"""
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
from app.paywall.catalog import PlanCatalog, get_catalog
from app.paywall.models import (
    AccessContext,
    AccessDecision,
    AccessPolicy,
    EntitlementState,
    Plan,
    Tier,
)

__all__ = [
    "AccessContext",
    "AccessDecision",
    "AccessPolicy",
    "EntitlementState",
    "Plan",
    "PlanCatalog",
    "Tier",
    "accessible_variants",
    "can_access_gated_content",
    "can_access_variant",
    "current_tier",
    "days_remaining",
    "decide_access",
    "filter_accessible_dates",
    "get_catalog",
    "is_premium",
]
