"""
SubscriptionService — программный API ядра для слоя представления.

Ответственности:
- check_access / access_decision: решение доступа из локального EntitlementStore (работает офлайн)
- start_payment: попытка оплаты через PaymentSessionCoordinator -> запись в ledger
  и применение подписки одной транзакцией
- record_payment: идемпотентное применение исхода по reference
- cancel_subscription, history, sync_history, reconcile_pending
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.payment import PaymentAttempt
from app.paywall import access
from app.paywall.catalog import PlanCatalog, get_catalog
from app.paywall.config import build_access_policy, get_days_per_month
from app.paywall.models import AccessContext, AccessDecision, AccessPolicy, EntitlementState, Plan, Tier
from app.schemas.payments import PaymentOutcome, PaymentRecord, PaymentStatus, UserContext
from app.services.entitlements.store import EntitlementStore
from app.services.ledger.service import PaymentLedger
from app.services.payments.coordinator import PaymentSession, PaymentSessionCoordinator
from app.services.payments.errors import VerificationTransportError
from app.services.remote_sync.service import RemoteLedgerSync
from app.utils.metrics import access_decisions_total

logger = logging.getLogger(__name__)

# Provider statuses that settle a pending attempt as failed
FAILED_PROVIDER_STATUSES = frozenset({"failed", "abandoned", "reversed"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionService:
    def __init__(
        self,
        db: Session,
        coordinator: PaymentSessionCoordinator | None = None,
        remote_sync: RemoteLedgerSync | None = None,
        *,
        catalog: PlanCatalog | None = None,
        policy: AccessPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
        days_per_month: int | None = None,
    ):
        self.db = db
        self.store = EntitlementStore(db)
        self.ledger = PaymentLedger(db)
        self.coordinator = coordinator
        self.remote_sync = remote_sync
        self.catalog = catalog or get_catalog()
        self.policy = policy or build_access_policy()
        self.clock = clock
        self.days_per_month = days_per_month or get_days_per_month()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def entitlement(self, user_id: str) -> EntitlementState:
        return self.store.load(user_id)

    def current_tier(self, user_id: str) -> Tier:
        return access.current_tier(self.store.load(user_id), self.clock())

    def days_remaining(self, user_id: str) -> int:
        return access.days_remaining(self.store.load(user_id), self.clock(), self.policy.days_remaining_cap)

    def access_decision(self, user_id: str, feature_id: str) -> AccessDecision:
        ctx = AccessContext(feature_id=feature_id, state=self.store.load(user_id), now=self.clock())
        decision = access.decide_access(ctx, self.policy)
        access_decisions_total.labels(reason=decision.reason).inc()
        logger.debug(
            "access_decision",
            extra={"user_id": user_id, "feature_id": feature_id, "reason": decision.reason},
        )
        return decision

    def check_access(self, user_id: str, feature_id: str) -> bool:
        return self.access_decision(user_id, feature_id).allowed

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _build_record(
        self,
        plan: Plan,
        user: UserContext,
        reference: str,
        status: PaymentStatus,
        message: str | None = None,
    ) -> PaymentRecord:
        return PaymentRecord(
            reference=reference,
            user_id=user.user_id,
            user_email=user.email,
            user_name=user.name,
            amount=plan.price,
            currency=self.coordinator.currency if self.coordinator else settings.payment_currency,
            plan_id=plan.id,
            plan_name=plan.name,
            plan_duration_months=plan.duration_months,
            status=status,
            message=message,
            created_at=self.clock(),
            metadata={"plan_id": plan.id, "payment_method": settings.payment_provider},
        )

    def start_payment(self, plan: Plan | str, user: UserContext) -> PaymentOutcome:
        """
        Run one payment attempt to a terminal outcome and persist it.
        Persistence errors propagate: a charged-but-unrecorded payment is never reported as success.
        """
        if isinstance(plan, str):
            plan = self.catalog.get(plan)
        if plan.is_free:
            raise ValueError("Free plan cannot be purchased")
        if self.coordinator is None:
            raise RuntimeError("SubscriptionService has no payment coordinator")

        def record_pending(session: PaymentSession) -> None:
            self._commit_record(
                self._build_record(plan, user, session.reference, PaymentStatus.PENDING),
                plan,
            )

        outcome = self.coordinator.run(plan, user, on_created=record_pending)
        self.record_payment(
            self._build_record(plan, user, outcome.reference, outcome.status, outcome.message),
            plan,
        )
        return outcome

    def record_payment(self, attempt: PaymentRecord, plan: Plan | None = None) -> PaymentAttempt:
        """
        Record an outcome and, for a first-time success, apply the plan.
        Both happen in one transaction; re-recording the same reference is a no-op.
        """
        plan = plan or self.catalog.get(attempt.plan_id)
        return self._commit_record(attempt, plan)

    def _commit_record(self, attempt: PaymentRecord, plan: Plan) -> PaymentAttempt:
        try:
            row, changed = self.ledger.record(attempt)
            if changed and attempt.status == PaymentStatus.SUCCESSFUL:
                self.store.activate(
                    attempt.user_id,
                    plan,
                    attempt.reference,
                    self.clock(),
                    days_per_month=self.days_per_month,
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "payment_record_failed",
                extra={"reference": attempt.reference, "user_id": attempt.user_id, "status": attempt.status.value},
            )
            raise
        if changed and attempt.status.is_terminal:
            self._mirror(row)
        return row

    def _mirror(self, row: PaymentAttempt) -> None:
        if self.remote_sync is None:
            return
        self.remote_sync.push_in_background(PaymentRecord.model_validate(row))

    def cancel_subscription(self, user_id: str) -> EntitlementState:
        """User-initiated cancel: back to free. Ledger history is kept."""
        try:
            state = self.store.cancel(user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return state

    def reconcile_pending(self, user_id: str) -> int:
        """
        Settle-check for attempts left pending (e.g. process died mid-payment):
        one verify per attempt, success is applied, definitive failures are closed.
        Attempts still running in this process are skipped.
        Returns how many attempts were settled.
        """
        if self.coordinator is None:
            raise RuntimeError("SubscriptionService has no payment coordinator")
        settled = 0
        in_flight = set(self.coordinator.active_references())
        for row in self.ledger.pending_for_user(user_id):
            if row.reference in in_flight:
                # Owned by a running session; its outcome is recorded by start_payment
                continue
            try:
                result = self.coordinator.provider.verify(row.reference)
            except VerificationTransportError as e:
                logger.warning(
                    "payment_reconcile_transport_error",
                    extra={"reference": row.reference, "user_id": user_id, "error": str(e)},
                )
                continue
            if result.is_success:
                status, message = PaymentStatus.SUCCESSFUL, "Payment successful (reconciled)"
            elif result.status in FAILED_PROVIDER_STATUSES:
                status, message = PaymentStatus.FAILED, f"Payment {result.status} (reconciled)"
            else:
                continue
            record = PaymentRecord.model_validate(row).model_copy(update={"status": status, "message": message})
            self.record_payment(record)
            settled += 1
        if settled:
            logger.info("payment_pending_reconciled", extra={"user_id": user_id, "count": settled})
        return settled

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, user_id: str) -> list[PaymentRecord]:
        """Newest first, from the local ledger."""
        return [PaymentRecord.model_validate(row) for row in self.ledger.history_for_user(user_id)]

    def sync_history(self, user_id: str) -> int:
        """Import remote-only entries into the local ledger (cross-device history). Never touches entitlement."""
        if self.remote_sync is None:
            return 0
        records = self.remote_sync.fetch_for_user(user_id)
        if not records:
            return 0
        try:
            imported = self.ledger.import_records(records)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return imported
