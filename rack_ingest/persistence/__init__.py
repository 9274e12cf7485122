"""Storage layer.

- schema.py: tables and ensure_schema()
- devices.py: device registry lookup + partial update
- slots.py: slot status upsert + append-only ingredient log
- alerts.py: open alert lookup, atomic create, acknowledgement
- audit.py: audit trail with logger fallback
"""

from .alerts import AlertRepository
from .audit import ALERT_ACKNOWLEDGE, ALERT_CREATE, LOG_CREATE, AuditLogger
from .devices import DeviceRepository
from .models import (
    AlertRecord,
    DeviceRecord,
    DeviceUpdate,
    IngredientLogEntry,
    SlotStatusRecord,
)
from .schema import ensure_schema, metadata
from .slots import SlotRepository

__all__ = [
    "AlertRepository",
    "AuditLogger",
    "ALERT_ACKNOWLEDGE",
    "ALERT_CREATE",
    "LOG_CREATE",
    "DeviceRepository",
    "SlotRepository",
    "AlertRecord",
    "DeviceRecord",
    "DeviceUpdate",
    "IngredientLogEntry",
    "SlotStatusRecord",
    "ensure_schema",
    "metadata",
]
