"""Slot status (one live row per device slot) and the append-only ingredient log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .base import as_utc, dialect_insert, to_utc, transaction
from .models import IngredientLogEntry, SlotStatusRecord
from .schema import ingredient_logs, slot_status

logger = logging.getLogger(__name__)


class SlotRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def upsert_status(
        self,
        device_id: int,
        slot_id: str,
        updated_at: datetime,
        *,
        ingredient: Optional[str] = None,
        tag_uid: Optional[str] = None,
        weight: Optional[float] = None,
        status: Optional[str] = None,
    ) -> None:
        """Creates or updates the (device, slot) row.

        Only the provided fields are overwritten on conflict.
        """
        fields = {
            "ingredient": ingredient,
            "tag_uid": tag_uid,
            "weight": weight,
            "status": status,
        }
        provided = {k: v for k, v in fields.items() if v is not None}
        provided["last_updated"] = to_utc(updated_at)

        stmt = dialect_insert(self._engine, slot_status).values(
            device_id=device_id,
            slot_id=slot_id,
            **provided,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[slot_status.c.device_id, slot_status.c.slot_id],
            set_=provided,
        )
        with transaction(self._engine, "slot status upsert") as conn:
            conn.execute(stmt)

    def get_status(self, device_id: int, slot_id: str) -> Optional[SlotStatusRecord]:
        with transaction(self._engine, "slot status lookup") as conn:
            row = conn.execute(
                select(slot_status).where(
                    slot_status.c.device_id == device_id,
                    slot_status.c.slot_id == slot_id,
                )
            ).fetchone()
        if not row:
            return None
        return SlotStatusRecord(
            device_id=int(row.device_id),
            slot_id=str(row.slot_id),
            ingredient=row.ingredient,
            tag_uid=row.tag_uid,
            weight=row.weight,
            status=row.status,
            last_updated=as_utc(row.last_updated),
        )

    def latest_log(self, device_id: int, slot_id: str) -> Optional[IngredientLogEntry]:
        """Most recently appended log entry for the slot."""
        with transaction(self._engine, "latest log lookup") as conn:
            row = conn.execute(
                select(ingredient_logs)
                .where(
                    ingredient_logs.c.device_id == device_id,
                    ingredient_logs.c.slot_id == slot_id,
                )
                .order_by(ingredient_logs.c.id.desc())
                .limit(1)
            ).fetchone()
        if not row:
            return None
        return IngredientLogEntry(
            id=int(row.id),
            device_id=int(row.device_id),
            slot_id=str(row.slot_id),
            timestamp=as_utc(row.timestamp),
            ingredient=row.ingredient,
            weight=row.weight,
            status=row.status,
            tag_uid=row.tag_uid,
            user_id=row.user_id,
            event_tag=row.event_tag,
            source=row.source,
        )

    def append_log(self, entry: IngredientLogEntry) -> Optional[int]:
        """Appends a log entry. Returns None when the reading is already logged."""
        try:
            with transaction(self._engine, "ingredient log append") as conn:
                result = conn.execute(
                    insert(ingredient_logs).values(
                        device_id=entry.device_id,
                        slot_id=entry.slot_id,
                        user_id=entry.user_id,
                        ingredient=entry.ingredient,
                        tag_uid=entry.tag_uid,
                        weight=entry.weight,
                        status=entry.status,
                        event_tag=entry.event_tag,
                        source=entry.source,
                        timestamp=to_utc(entry.timestamp),
                    )
                )
                return int(result.inserted_primary_key[0])
        except IntegrityError:
            logger.info(
                "[DB] Duplicate reading device=%s slot=%s ts=%s, already logged",
                entry.device_id,
                entry.slot_id,
                entry.timestamp.isoformat(),
            )
            return None
