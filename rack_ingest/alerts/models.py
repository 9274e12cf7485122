"""Alert types and dedup subjects."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..persistence.models import DeviceRecord


class AlertType(str, Enum):
    LOW_STOCK = "LOW_STOCK"
    EMPTY = "EMPTY"
    OVERWEIGHT = "OVERWEIGHT"
    DEPLETION = "DEPLETION"
    RESTOCK = "RESTOCK"
    BATCH_USAGE = "BATCH_USAGE"
    SENSOR_ERROR = "SENSOR_ERROR"
    OFFLINE = "OFFLINE"
    ONLINE = "ONLINE"
    ANOMALY = "ANOMALY"


DEVICE_ALERTS = (AlertType.OFFLINE, AlertType.ONLINE)


@dataclass(frozen=True)
class AlertSubject:
    """What an alert is about.

    Liveness alerts are keyed by device only. Stock and sensor alerts are
    keyed by device + slot + ingredient + owner.
    """

    device_id: int
    rack_id: str
    user_id: Optional[int] = None
    slot_id: Optional[str] = None
    ingredient: Optional[str] = None
    device_scoped: bool = True

    @classmethod
    def for_device(cls, device: DeviceRecord) -> "AlertSubject":
        return cls(device_id=device.id, rack_id=device.rack_id, user_id=device.owner_id)

    @classmethod
    def for_slot(cls, device: DeviceRecord, slot_id: str, ingredient: str) -> "AlertSubject":
        return cls(
            device_id=device.id,
            rack_id=device.rack_id,
            user_id=device.owner_id,
            slot_id=slot_id,
            ingredient=ingredient,
            device_scoped=False,
        )

    @property
    def dedup_key(self) -> str:
        if self.device_scoped:
            return f"device:{self.device_id}"
        return (
            f"device:{self.device_id}|slot:{self.slot_id}"
            f"|ingredient:{self.ingredient}|user:{self.user_id}"
        )


_CRITICAL_STATUSES = {
    "LOW": AlertType.LOW_STOCK,
    "VLOW": AlertType.LOW_STOCK,
    "VERY_LOW": AlertType.LOW_STOCK,
    "VERY-LOW": AlertType.LOW_STOCK,
    "EMPTY": AlertType.EMPTY,
}


def stock_alert_for_status(status: Optional[str]) -> Optional[AlertType]:
    """LOW/VLOW → LOW_STOCK, EMPTY → EMPTY, anything else → None (case-insensitive)."""
    if not status:
        return None
    return _CRITICAL_STATUSES.get(status.strip().upper())
