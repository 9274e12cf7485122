"""Device registry access: lookup by rack identifier and partial updates."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Engine

from ..errors import UnknownDevice
from .base import as_utc, transaction
from .models import DeviceRecord, DeviceUpdate
from .schema import devices, users

logger = logging.getLogger(__name__)


def _to_record(row) -> DeviceRecord:
    return DeviceRecord(
        id=int(row.id),
        rack_id=str(row.rack_id),
        name=str(row.name or ""),
        owner_id=int(row.owner_id) if row.owner_id is not None else None,
        is_online=bool(row.is_online),
        last_seen=as_utc(row.last_seen),
        last_weight=float(row.last_weight) if row.last_weight is not None else None,
        last_status=row.last_status,
        ip_address=row.ip_address,
        firmware_version=row.firmware_version,
    )


class DeviceRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def get_by_rack_id(self, rack_id: str) -> Optional[DeviceRecord]:
        with transaction(self._engine, "device lookup") as conn:
            row = conn.execute(
                select(devices).where(devices.c.rack_id == rack_id)
            ).fetchone()
        return _to_record(row) if row else None

    def require_by_rack_id(self, rack_id: str) -> DeviceRecord:
        device = self.get_by_rack_id(rack_id)
        if device is None:
            raise UnknownDevice(rack_id)
        return device

    def apply_update(self, device_id: int, change: DeviceUpdate) -> None:
        """Writes only the fields present in `change`; absent fields are kept."""
        values = change.values()
        if not values:
            return
        with transaction(self._engine, "device update") as conn:
            conn.execute(update(devices).where(devices.c.id == device_id).values(**values))

    def get_webhook_url(self, user_id: Optional[int]) -> Optional[str]:
        """Webhook URL configured by the device owner, if any."""
        if user_id is None:
            return None
        with transaction(self._engine, "webhook lookup") as conn:
            row = conn.execute(
                select(users.c.webhook_url).where(users.c.id == user_id)
            ).fetchone()
        if not row or not row.webhook_url:
            return None
        return str(row.webhook_url)
