"""Alert store: open-alert lookup, atomic create and acknowledgement.

The partial unique index uq_alerts_open_key guarantees at most one
unacknowledged alert per (dedup_key, type); create() surfaces a lost race
as IntegrityError.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import false, insert, select, update
from sqlalchemy.engine import Engine

from .base import as_utc, transaction, utcnow
from .models import AlertRecord
from .schema import alerts

logger = logging.getLogger(__name__)


def _to_record(row) -> AlertRecord:
    return AlertRecord(
        id=int(row.id),
        dedup_key=str(row.dedup_key),
        type=str(row.type),
        device_id=int(row.device_id),
        user_id=int(row.user_id) if row.user_id is not None else None,
        slot_id=row.slot_id,
        ingredient=row.ingredient,
        acknowledged=bool(row.acknowledged),
        created_at=as_utc(row.created_at),
        details=dict(row.details or {}),
        acknowledged_at=as_utc(row.acknowledged_at),
    )


class AlertRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def find_open(self, dedup_key: str, alert_type: str) -> Optional[AlertRecord]:
        with transaction(self._engine, "open alert lookup") as conn:
            row = conn.execute(
                select(alerts).where(
                    alerts.c.dedup_key == dedup_key,
                    alerts.c.type == alert_type,
                    alerts.c.acknowledged == false(),
                )
            ).fetchone()
        return _to_record(row) if row else None

    def create(
        self,
        *,
        dedup_key: str,
        alert_type: str,
        device_id: int,
        user_id: Optional[int] = None,
        slot_id: Optional[str] = None,
        ingredient: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> AlertRecord:
        """Inserts an open alert. Raises IntegrityError if one is already open."""
        created_at = created_at or utcnow()
        with transaction(self._engine, "alert create") as conn:
            result = conn.execute(
                insert(alerts).values(
                    dedup_key=dedup_key,
                    type=alert_type,
                    device_id=device_id,
                    user_id=user_id,
                    slot_id=slot_id,
                    ingredient=ingredient,
                    details=details or {},
                    acknowledged=False,
                    created_at=created_at,
                )
            )
            alert_id = int(result.inserted_primary_key[0])

        return AlertRecord(
            id=alert_id,
            dedup_key=dedup_key,
            type=alert_type,
            device_id=device_id,
            user_id=user_id,
            slot_id=slot_id,
            ingredient=ingredient,
            acknowledged=False,
            created_at=created_at,
            details=dict(details or {}),
        )

    def acknowledge(self, alert_id: int) -> Optional[AlertRecord]:
        """Closes an alert so its key may raise again. None if it does not exist."""
        with transaction(self._engine, "alert acknowledge") as conn:
            conn.execute(
                update(alerts)
                .where(alerts.c.id == alert_id, alerts.c.acknowledged == false())
                .values(acknowledged=True, acknowledged_at=utcnow())
            )
            row = conn.execute(select(alerts).where(alerts.c.id == alert_id)).fetchone()
        return _to_record(row) if row else None

    def list_open(self, device_id: Optional[int] = None) -> List[AlertRecord]:
        stmt = select(alerts).where(alerts.c.acknowledged == false())
        if device_id is not None:
            stmt = stmt.where(alerts.c.device_id == device_id)
        with transaction(self._engine, "open alert listing") as conn:
            rows = conn.execute(stmt.order_by(alerts.c.id)).fetchall()
        return [_to_record(r) for r in rows]
