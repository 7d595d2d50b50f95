from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class UserContext(BaseModel):
    """Who is paying. Supplied by the presentation layer."""

    user_id: str
    email: str
    name: str = ""

    model_config = {"frozen": True}


class PaymentOutcome(BaseModel):
    """Terminal result of one payment attempt."""

    status: PaymentStatus
    reference: str
    amount: Decimal
    message: str = ""

    model_config = {"frozen": True}

    @property
    def is_successful(self) -> bool:
        return self.status == PaymentStatus.SUCCESSFUL

    @property
    def is_cancelled(self) -> bool:
        return self.status == PaymentStatus.CANCELLED


class PaymentRecord(BaseModel):
    """Ledger row shape; also the wire format for remote sync."""

    reference: str
    user_id: str
    user_email: str
    user_name: str = ""
    amount: Decimal
    currency: str
    plan_id: str
    plan_name: str
    plan_duration_months: int = 0
    status: PaymentStatus
    message: str | None = None
    created_at: datetime
    verified_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="meta")

    model_config = {"from_attributes": True, "populate_by_name": True}

    def to_remote(self) -> dict[str, Any]:
        """JSON body for the remote payments table."""
        data = self.model_dump(mode="json")
        data["tx_ref"] = self.reference
        data["transaction_id"] = self.reference
        data.pop("reference")
        data.pop("message")
        return data

    @classmethod
    def from_remote(cls, row: dict[str, Any]) -> "PaymentRecord":
        data = dict(row)
        data["reference"] = data.get("tx_ref") or data.get("transaction_id")
        data["metadata"] = data.get("metadata") or {}
        return cls.model_validate(data)
