"""
Plan catalog: immutable table loaded from YAML once per process.
Changing plans means editing catalog.yaml (or PLAN_CATALOG_PATH), never engine code.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator

import yaml

from app.core.config import settings
from app.paywall.models import Plan, Tier
from app.services.payments.errors import UnknownPlanError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("catalog.yaml")


class PlanCatalog:
    """Read-only collection of plans ordered by tier."""

    def __init__(self, plans: list[Plan]) -> None:
        ids = [p.id for p in plans]
        duplicates = {i for i in ids if ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Duplicate plan ids in catalog: {sorted(duplicates)}")
        self._plans = tuple(sorted(plans, key=lambda p: (p.tier.rank, p.price)))
        self._by_id = {p.id: p for p in self._plans}

    def __iter__(self) -> Iterator[Plan]:
        return iter(self._plans)

    def __len__(self) -> int:
        return len(self._plans)

    @property
    def plans(self) -> tuple[Plan, ...]:
        return self._plans

    def get(self, plan_id: str) -> Plan:
        try:
            return self._by_id[plan_id]
        except KeyError:
            raise UnknownPlanError(plan_id) from None

    def find(self, plan_id: str) -> Plan | None:
        return self._by_id.get(plan_id)

    def for_tier(self, tier: Tier) -> Plan | None:
        for plan in self._plans:
            if plan.tier == tier:
                return plan
        return None

    def paid_plans(self) -> list[Plan]:
        return [p for p in self._plans if not p.is_free]


def parse_catalog(data: dict[str, Any]) -> PlanCatalog:
    raw_plans = (data or {}).get("plans") or []
    return PlanCatalog([Plan.model_validate(item) for item in raw_plans])


def load_catalog(path: str | Path | None = None) -> PlanCatalog:
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    with open(catalog_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    catalog = parse_catalog(data)
    logger.info("plan_catalog_loaded", extra={"count": len(catalog)})
    return catalog


@lru_cache(maxsize=1)
def get_catalog() -> PlanCatalog:
    """Process-wide catalog (settings.plan_catalog_path or the bundled table)."""
    return load_catalog(settings.plan_catalog_path or None)
