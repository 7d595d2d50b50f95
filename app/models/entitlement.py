from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from app.db.base import Base


class EntitlementValue(Base):
    """Key/value persistence for a user's subscription fields (tier, expiry, purchase date)."""

    __tablename__ = "entitlement_values"

    user_id = Column(String, primary_key=True)
    key = Column(String, primary_key=True)
    value = Column(String, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
