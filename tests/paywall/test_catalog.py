"""Tests for the plan catalog: bundled table, YAML parsing, validation."""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.paywall.catalog import load_catalog, parse_catalog
from app.paywall.models import Plan, Tier
from app.services.payments.errors import UnknownPlanError


def test_bundled_catalog_has_four_tiers_in_order():
    catalog = load_catalog()
    assert [p.tier for p in catalog] == [Tier.FREE, Tier.T1, Tier.T2, Tier.T3]
    assert [p.duration_months for p in catalog] == [0, 3, 6, 12]
    assert catalog.get("six_months").price == Decimal("2.00")


def test_paid_plans_excludes_free():
    catalog = load_catalog()
    assert all(not p.is_free for p in catalog.paid_plans())
    assert len(catalog.paid_plans()) == 3


def test_unknown_plan_raises():
    with pytest.raises(UnknownPlanError):
        load_catalog().get("lifetime")
    assert load_catalog().find("lifetime") is None


def test_for_tier():
    assert load_catalog().for_tier(Tier.T3).id == "yearly"


def test_plan_is_immutable():
    plan = load_catalog().get("yearly")
    with pytest.raises(Exception):
        plan.price = Decimal("0")


def test_duration_uses_fixed_month_length():
    plan = load_catalog().get("six_months")
    assert plan.duration_days(30) == 180
    assert plan.duration(30) == timedelta(days=180)
    assert plan.price_per_month == Decimal("0.33")


def test_load_from_custom_path(tmp_path):
    path = tmp_path / "plans.yaml"
    path.write_text(
        "plans:\n"
        "  - {id: basic, tier: free, name: Basic, price: '0', duration_months: 0}\n"
        "  - {id: gold, tier: t3, name: Gold, price: '9.99', duration_months: 12, features: [a, b]}\n",
        encoding="utf-8",
    )
    catalog = load_catalog(path)
    assert len(catalog) == 2
    assert catalog.get("gold").features == ("a", "b")


def test_duplicate_ids_rejected():
    data = {"plans": [
        {"id": "x", "tier": "t1", "name": "X", "price": "1", "duration_months": 1},
        {"id": "x", "tier": "t2", "name": "Y", "price": "2", "duration_months": 2},
    ]}
    with pytest.raises(ValueError):
        parse_catalog(data)


def test_negative_price_rejected():
    with pytest.raises(ValueError):
        Plan(id="bad", tier=Tier.T1, name="Bad", price=Decimal("-1"), duration_months=1)


def test_free_plan_with_duration_rejected():
    with pytest.raises(ValueError):
        Plan(id="bad", tier=Tier.FREE, name="Bad", price=Decimal("0"), duration_months=3)


def test_paid_plan_without_duration_rejected():
    with pytest.raises(ValueError):
        Plan(id="bad", tier=Tier.T1, name="Bad", price=Decimal("1"), duration_months=0)
