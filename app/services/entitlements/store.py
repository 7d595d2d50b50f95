"""
EntitlementStore — key/value persistence of subscription fields per user.

Единственное место, где EntitlementState читается/пишется в БД. Движок доступа
(app.paywall.access) получает снимок состояния и ничего не знает о хранилище.
Методы делают flush, commit на стороне вызывающего (одна транзакция с ledger).
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.entitlement import EntitlementValue
from app.paywall.audit import record_entitlement_change
from app.paywall.models import EntitlementState, Plan, Tier
from app.utils.metrics import entitlement_changes_total

logger = logging.getLogger(__name__)

TIER_KEY = "subscription_tier"
EXPIRY_KEY = "subscription_expiry"
PURCHASE_DATE_KEY = "subscription_purchase_date"
REFERENCE_KEY = "subscription_reference"

STATE_KEYS = (TIER_KEY, EXPIRY_KEY, PURCHASE_DATE_KEY, REFERENCE_KEY)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class EntitlementStore:
    def __init__(self, db: Session):
        self.db = db

    def _rows(self, user_id: str) -> dict[str, EntitlementValue]:
        rows = (
            self.db.query(EntitlementValue)
            .filter(EntitlementValue.user_id == user_id)
            .all()
        )
        return {row.key: row for row in rows}

    def _set(self, rows: dict[str, EntitlementValue], user_id: str, key: str, value: str | None) -> None:
        row = rows.get(key)
        if row is None:
            row = EntitlementValue(user_id=user_id, key=key)
            rows[key] = row
        row.value = value
        self.db.add(row)

    def load(self, user_id: str) -> EntitlementState:
        """
        Snapshot for the engine. A paid tier without expiry (corrupted/partial
        write) is read as free rather than raising.
        """
        values = {k: row.value for k, row in self._rows(user_id).items()}
        raw_tier = values.get(TIER_KEY) or Tier.FREE.value
        try:
            tier = Tier(raw_tier)
        except ValueError:
            logger.warning("entitlement_unknown_tier", extra={"user_id": user_id, "tier": raw_tier})
            tier = Tier.FREE
        expires_at = _parse_dt(values.get(EXPIRY_KEY))
        if tier != Tier.FREE and expires_at is None:
            logger.warning("entitlement_missing_expiry", extra={"user_id": user_id, "tier": tier.value})
            tier = Tier.FREE
        return EntitlementState(
            tier=tier,
            expires_at=expires_at,
            purchased_at=_parse_dt(values.get(PURCHASE_DATE_KEY)),
            reference=values.get(REFERENCE_KEY),
        )

    def activate(
        self,
        user_id: str,
        plan: Plan,
        reference: str,
        now: datetime,
        days_per_month: int = 30,
    ) -> tuple[EntitlementState, bool]:
        """
        tier = plan.tier, expires_at = now + months * days_per_month days, purchased_at = now.
        Idempotent by reference: re-applying the reference already in the store changes
        nothing. Returns (state, changed).
        """
        if plan.is_free:
            raise ValueError("Free plan cannot be activated")

        rows = self._rows(user_id)
        current_ref = rows[REFERENCE_KEY].value if REFERENCE_KEY in rows else None
        if current_ref == reference:
            entitlement_changes_total.labels(change="reapplied_noop").inc()
            logger.info(
                "entitlement_reapply_noop",
                extra={"user_id": user_id, "reference": reference, "plan_id": plan.id},
            )
            return self.load(user_id), False

        expires_at = now + plan.duration(days_per_month)
        self._set(rows, user_id, TIER_KEY, plan.tier.value)
        self._set(rows, user_id, EXPIRY_KEY, expires_at.isoformat())
        self._set(rows, user_id, PURCHASE_DATE_KEY, now.isoformat())
        self._set(rows, user_id, REFERENCE_KEY, reference)
        self.db.flush()

        entitlement_changes_total.labels(change="activated").inc()
        record_entitlement_change(
            user_id,
            "activated",
            tier=plan.tier.value,
            reference=reference,
            plan_id=plan.id,
            expires_at=expires_at,
        )
        return EntitlementState(
            tier=plan.tier,
            expires_at=expires_at,
            purchased_at=now,
            reference=reference,
        ), True

    def cancel(self, user_id: str) -> EntitlementState:
        """Revert to free: tier = free, expiry/purchase/reference cleared. Ledger untouched."""
        rows = self._rows(user_id)
        self._set(rows, user_id, TIER_KEY, Tier.FREE.value)
        for key in (EXPIRY_KEY, PURCHASE_DATE_KEY, REFERENCE_KEY):
            if key in rows:
                self.db.delete(rows[key])
        self.db.flush()

        entitlement_changes_total.labels(change="cancelled").inc()
        record_entitlement_change(user_id, "cancelled", tier=Tier.FREE.value)
        return EntitlementState.free()
