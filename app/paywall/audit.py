"""
Аудит изменений подписки: вызывается из EntitlementStore по факту записи.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

logger = logging.getLogger(__name__)

EntitlementChange = Literal["activated", "cancelled"]


def record_entitlement_change(
    user_id: str,
    change: EntitlementChange,
    *,
    tier: str,
    reference: str | None = None,
    plan_id: str | None = None,
    expires_at: datetime | None = None,
) -> None:
    """
    Записать событие изменения подписки для аналитики.
    Вызывать только после того как состояние записано в сессию БД.
    """
    logger.info(
        f"entitlement_{change}",
        extra={
            "user_id": user_id,
            "tier": tier,
            "reference": reference,
            "plan_id": plan_id,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )
