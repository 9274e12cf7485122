"""Records returned by the repositories."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DeviceRecord:
    id: int
    rack_id: str
    name: str
    owner_id: Optional[int]
    is_online: bool
    last_seen: Optional[datetime]
    last_weight: Optional[float]
    last_status: Optional[str]
    ip_address: Optional[str] = None
    firmware_version: Optional[str] = None


@dataclass(frozen=True)
class DeviceUpdate:
    """Partial update: None means "leave the column as it is"."""

    is_online: Optional[bool] = None
    last_seen: Optional[datetime] = None
    last_weight: Optional[float] = None
    last_status: Optional[str] = None
    ip_address: Optional[str] = None
    firmware_version: Optional[str] = None

    def values(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class SlotStatusRecord:
    device_id: int
    slot_id: str
    ingredient: Optional[str]
    tag_uid: Optional[str]
    weight: Optional[float]
    status: Optional[str]
    last_updated: datetime


@dataclass(frozen=True)
class IngredientLogEntry:
    device_id: int
    slot_id: str
    timestamp: datetime
    ingredient: Optional[str] = None
    weight: Optional[float] = None
    status: Optional[str] = None
    tag_uid: Optional[str] = None
    user_id: Optional[int] = None
    event_tag: Optional[str] = None
    source: str = "device"
    id: Optional[int] = None


@dataclass(frozen=True)
class AlertRecord:
    id: int
    dedup_key: str
    type: str
    device_id: int
    user_id: Optional[int]
    slot_id: Optional[str]
    ingredient: Optional[str]
    acknowledged: bool
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)
    acknowledged_at: Optional[datetime] = None
