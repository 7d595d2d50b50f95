"""
PaymentLedger — append/update журнал попыток оплаты, ключ — reference.

Правила record():
- нет записи -> insert;
- pending -> терминальный статус: update (verified_at для successful);
- тот же терминальный статус повторно -> no-op;
- другой терминальный статус (или pending после терминального) -> DuplicateReferenceConflict.
Методы делают flush; commit на стороне вызывающего.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.payment import (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_SUCCESSFUL,
    PaymentAttempt,
)
from app.schemas.payments import PaymentRecord
from app.services.payments.errors import DuplicateReferenceConflict

logger = logging.getLogger(__name__)


class PaymentLedger:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def record(self, attempt: PaymentRecord) -> tuple[PaymentAttempt, bool]:
        """Insert-or-update by reference. Returns (row, changed)."""
        status = attempt.status.value
        existing = self.get_by_reference(attempt.reference)

        if existing is None:
            row = PaymentAttempt(
                reference=attempt.reference,
                user_id=attempt.user_id,
                user_email=attempt.user_email,
                user_name=attempt.user_name,
                amount=attempt.amount,
                currency=attempt.currency,
                plan_id=attempt.plan_id,
                plan_name=attempt.plan_name,
                plan_duration_months=attempt.plan_duration_months,
                status=status,
                message=attempt.message,
                meta=dict(attempt.metadata),
                created_at=attempt.created_at,
                verified_at=attempt.verified_at or self._verified_at_for(status),
            )
            self.db.add(row)
            self.db.flush()
            logger.info(
                "ledger_recorded",
                extra={"reference": attempt.reference, "user_id": attempt.user_id, "status": status},
            )
            return row, True

        if existing.status == status:
            logger.info(
                "ledger_record_noop",
                extra={"reference": attempt.reference, "status": status},
            )
            return existing, False

        if existing.is_terminal:
            logger.error(
                "ledger_reference_conflict",
                extra={"reference": attempt.reference, "status": existing.status, "new_status": status},
            )
            raise DuplicateReferenceConflict(attempt.reference, existing.status, status)

        existing.status = status
        existing.message = attempt.message
        existing.verified_at = attempt.verified_at or self._verified_at_for(status)
        if attempt.metadata:
            existing.meta = {**(existing.meta or {}), **attempt.metadata}
        self.db.add(existing)
        self.db.flush()
        logger.info(
            "ledger_status_updated",
            extra={"reference": attempt.reference, "user_id": existing.user_id, "status": status},
        )
        return existing, True

    @staticmethod
    def _verified_at_for(status: str) -> datetime | None:
        return datetime.now(timezone.utc) if status == PAYMENT_STATUS_SUCCESSFUL else None

    def import_records(self, records: Iterable[PaymentRecord]) -> int:
        """Insert records whose reference is unknown locally (cross-device history). Returns count."""
        imported = 0
        for record in records:
            if self.get_by_reference(record.reference) is not None:
                continue
            self.record(record)
            imported += 1
        if imported:
            logger.info("ledger_imported", extra={"count": imported})
        return imported

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_reference(self, reference: str) -> PaymentAttempt | None:
        return (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.reference == reference)
            .one_or_none()
        )

    def history_for_user(self, user_id: str) -> list[PaymentAttempt]:
        """Newest first."""
        return (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.user_id == user_id)
            .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.reference.desc())
            .all()
        )

    def history_for_email(self, email: str) -> list[PaymentAttempt]:
        return (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.user_email == email)
            .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.reference.desc())
            .all()
        )

    def successful_for_user(self, user_id: str) -> list[PaymentAttempt]:
        return (
            self.db.query(PaymentAttempt)
            .filter(
                PaymentAttempt.user_id == user_id,
                PaymentAttempt.status == PAYMENT_STATUS_SUCCESSFUL,
            )
            .order_by(PaymentAttempt.created_at.desc())
            .all()
        )

    def pending_for_user(self, user_id: str) -> list[PaymentAttempt]:
        return (
            self.db.query(PaymentAttempt)
            .filter(
                PaymentAttempt.user_id == user_id,
                PaymentAttempt.status == PAYMENT_STATUS_PENDING,
            )
            .order_by(PaymentAttempt.created_at.desc())
            .all()
        )

    def total_spent(self, user_id: str) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(PaymentAttempt.amount), 0))
            .filter(
                PaymentAttempt.user_id == user_id,
                PaymentAttempt.status == PAYMENT_STATUS_SUCCESSFUL,
            )
            .scalar()
        )
        return Decimal(str(total or 0))

    def payment_count(self, user_id: str) -> int:
        return (
            self.db.query(func.count(PaymentAttempt.id))
            .filter(PaymentAttempt.user_id == user_id)
            .scalar()
        ) or 0
