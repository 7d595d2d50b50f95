"""
PaymentAttempt model — ledger of every payment attempt and its outcome.
reference уникален: это ключ идемпотентности (один терминальный статус на reference).
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_SUCCESSFUL = "successful"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_CANCELLED = "cancelled"
PAYMENT_STATUS_ERROR = "error"

TERMINAL_STATUSES = frozenset({
    PAYMENT_STATUS_SUCCESSFUL,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_CANCELLED,
    PAYMENT_STATUS_ERROR,
})


class PaymentAttempt(Base):
    __tablename__ = "payment_attempts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    reference = Column(String, unique=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=False, default="")
    amount = Column(Numeric(10, 2), nullable=False)            # major units
    currency = Column(String, nullable=False)
    plan_id = Column(String, nullable=False)
    plan_name = Column(String, nullable=False)
    plan_duration_months = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PAYMENT_STATUS_PENDING)
    message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    verified_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
