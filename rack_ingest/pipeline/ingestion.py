"""Ingestion pipeline.

One validated message in, side effects out. Telemetry path:

1. resolve the device by rack identifier (unknown → drop + warning)
2. partial device update (online, lastSeen, last reading, ip/firmware)
3. refresh the live state entry
4. emit `update` and `deviceStatus`
5. stop here when the reading carries no ingredient
6. classify against the latest log entry, under the (device, slot) lock
7. upsert slot status; append log + audit when significant; raise the
   classifier alert (also when the log was suppressed)
8. raise LOW_STOCK / EMPTY for critical statuses
9. route a command/response pair, with or without ingredient

Each step catches its own PersistenceFailure: a failed write is logged
and counted, and the remaining steps still run. Nothing propagates to
the MQTT worker.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..alerts.deduplicator import AlertDeduplicator
from ..alerts.models import AlertSubject, AlertType, stock_alert_for_status
from ..classification import ClassificationDecision, EventClassifier, SlotReading
from ..errors import PersistenceFailure, UnknownDevice
from ..live_state import LiveStateCache
from ..locks import KeyedLocks
from ..mqtt.validators import CommandResponseMessage, HeartbeatMessage, TelemetryMessage
from ..notifications.broadcaster import DEVICE_STATUS, UPDATE
from ..notifications.service import NotificationService
from ..persistence.audit import LOG_CREATE
from ..persistence.base import from_epoch
from ..persistence.devices import DeviceRepository
from ..persistence.models import DeviceRecord, DeviceUpdate, IngredientLogEntry
from ..persistence.slots import SlotRepository
from .commands import CommandHandler
from .stats import PipelineStats

logger = logging.getLogger(__name__)


class IngestionPipeline:
    def __init__(
        self,
        devices: DeviceRepository,
        slots: SlotRepository,
        live_state: LiveStateCache,
        classifier: EventClassifier,
        alerts: AlertDeduplicator,
        notifications: NotificationService,
        commands: Optional[CommandHandler] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._devices = devices
        self._slots = slots
        self._live_state = live_state
        self._classifier = classifier
        self._alerts = alerts
        self._notifications = notifications
        self._clock = clock
        self._commands = commands or CommandHandler(slots, notifications, clock=clock)
        self._locks = locks or KeyedLocks()
        self.stats = PipelineStats()

    # =========================================================================
    # Entry points
    # =========================================================================

    def handle_telemetry(self, message: TelemetryMessage) -> None:
        self.stats.incr("telemetry")
        now_ts = self._clock()
        now = from_epoch(now_ts)

        device = self._resolve(message.device_id)
        if device is None:
            return

        self._persist(
            "device update",
            self._devices.apply_update,
            device.id,
            DeviceUpdate(
                is_online=True,
                last_seen=now,
                last_weight=message.weight,
                last_status=message.status,
                ip_address=message.ip,
                firmware_version=message.firmware_version,
            ),
        )

        self._touch_live_state(
            device.rack_id,
            now_ts,
            {
                "slotId": message.slot_id,
                "ingredient": message.ingredient_name,
                "weight": message.weight,
                "status": message.status,
            },
        )

        self._notifications.emit(
            UPDATE,
            {
                "deviceId": device.rack_id,
                "slotId": message.slot_id,
                "ingredient": message.ingredient_name,
                "weight": message.weight,
                "status": message.status,
                "isOnline": True,
                "lastSeen": now.isoformat(),
                "ipAddress": message.ip or device.ip_address,
            },
        )
        self._notifications.emit(
            DEVICE_STATUS,
            {
                "deviceId": device.rack_id,
                "isOnline": True,
                "lastSeen": now.isoformat(),
                "weight": message.weight,
                "status": message.status,
                "ingredient": message.ingredient_name,
            },
        )

        if not message.has_ingredient:
            self.stats.incr("untracked")
            logger.debug("[PIPELINE] No ingredient device=%s slot=%s, stock path skipped", device.rack_id, message.slot_id)
        elif not message.slot_id:
            self.stats.incr("untracked")
            logger.warning("[PIPELINE] Reading without slotId device=%s, stock path skipped", device.rack_id)
        else:
            self._stock_path(device, message, now)

        if message.has_command:
            self._commands.handle(device, message)
            self.stats.incr("commands")

    def handle_heartbeat(self, message: HeartbeatMessage) -> None:
        self.stats.incr("heartbeats")
        now_ts = self._clock()
        now = from_epoch(now_ts)

        device = self._resolve(message.device_id)
        if device is None:
            return

        self._persist(
            "device heartbeat",
            self._devices.apply_update,
            device.id,
            DeviceUpdate(
                is_online=True,
                last_seen=now,
                ip_address=message.ip,
                firmware_version=message.firmware_version,
            ),
        )
        self._touch_live_state(device.rack_id, now_ts)

        entry = self._live_state_get(device.rack_id)
        last_reading = entry.reading if entry is not None else {}
        self._notifications.emit(
            DEVICE_STATUS,
            {
                "deviceId": device.rack_id,
                "isOnline": True,
                "lastSeen": now.isoformat(),
                "weight": last_reading.get("weight", device.last_weight),
                "status": last_reading.get("status", device.last_status),
                "ingredient": last_reading.get("ingredient"),
            },
        )

    def handle_response(self, message: CommandResponseMessage) -> None:
        self.stats.incr("commands")
        device = self._resolve(message.device_id)
        if device is None:
            return
        self._commands.handle(device, message)

    # =========================================================================
    # Stock path
    # =========================================================================

    def _stock_path(self, device: DeviceRecord, message: TelemetryMessage, now: datetime) -> None:
        slot_id = message.slot_id
        ingredient = message.ingredient_name
        current = SlotReading(
            slot_id=slot_id,
            ingredient=ingredient,
            weight=message.weight,
            status=message.status,
        )
        subject = AlertSubject.for_slot(device, slot_id, ingredient)

        with self._locks.hold((device.id, slot_id)):
            decision = self._classify(device, current)

            self._persist(
                "slot status upsert",
                self._slots.upsert_status,
                device.id,
                slot_id,
                now,
                ingredient=ingredient,
                tag_uid=message.tag_uid,
                weight=message.weight,
                status=message.status,
            )

            if decision is not None:
                self._apply_decision(device, message, decision, subject, now)

        critical = stock_alert_for_status(message.status)
        if critical is not None:
            self._raise_alert(
                subject,
                critical,
                details={"status": message.status, "weight": message.weight},
                status=message.status,
            )

    def _classify(self, device: DeviceRecord, current: SlotReading) -> Optional[ClassificationDecision]:
        try:
            latest = self._slots.latest_log(device.id, current.slot_id)
        except PersistenceFailure as e:
            # Without the previous entry every reading would look like a first reading.
            self.stats.incr("persistence_failures")
            logger.error("[PIPELINE] %s, reading not classified device=%s slot=%s", e, device.rack_id, current.slot_id)
            return None

        previous = None
        if latest is not None:
            previous = SlotReading(
                slot_id=latest.slot_id,
                ingredient=latest.ingredient,
                weight=latest.weight,
                status=latest.status,
            )
        return self._classifier.classify(previous, current)

    def _apply_decision(
        self,
        device: DeviceRecord,
        message: TelemetryMessage,
        decision: ClassificationDecision,
        subject: AlertSubject,
        now: datetime,
    ) -> None:
        if decision.should_log:
            entry = IngredientLogEntry(
                device_id=device.id,
                slot_id=message.slot_id,
                timestamp=message.timestamp or now,
                ingredient=message.ingredient_name,
                weight=message.weight,
                status=decision.logged_status,
                tag_uid=message.tag_uid,
                user_id=device.owner_id,
                event_tag=decision.event_tag.value if decision.event_tag else None,
            )
            log_id = self._persist("ingredient log append", self._slots.append_log, entry)
            if log_id is not None:
                self.stats.incr("logged")
                self._notifications.audit(
                    LOG_CREATE,
                    "ingredient_log",
                    log_id,
                    user_id=device.owner_id,
                    device_id=device.id,
                    details={
                        "slotId": entry.slot_id,
                        "ingredient": entry.ingredient,
                        "weight": entry.weight,
                        "status": entry.status,
                        "eventTag": entry.event_tag,
                        "rules": list(decision.matched_rules),
                    },
                )
            else:
                self.stats.incr("not_logged")
        else:
            self.stats.incr("filtered")

        if decision.alert_type is not None:
            self._raise_alert(
                subject,
                AlertType(decision.alert_type.value),
                details=decision.alert_details,
                status=message.status,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve(self, rack_id: Optional[str]) -> Optional[DeviceRecord]:
        try:
            return self._devices.require_by_rack_id(rack_id or "")
        except UnknownDevice as e:
            self.stats.incr("unknown_device")
            logger.warning("[PIPELINE] %s, dropped", e)
        except PersistenceFailure as e:
            self.stats.incr("persistence_failures")
            logger.error("[PIPELINE] %s, event dropped device=%s", e, rack_id)
        return None

    def _persist(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except PersistenceFailure as e:
            self.stats.incr("persistence_failures")
            logger.error("[PIPELINE] %s: %s", operation, e)
            return None

    def _raise_alert(
        self,
        subject: AlertSubject,
        alert_type: AlertType,
        *,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
    ) -> None:
        alert = self._persist(
            "alert raise",
            self._alerts.raise_alert,
            subject,
            alert_type,
            details=details,
            status=status,
        )
        if alert is not None:
            self.stats.incr("alerts")

    def _touch_live_state(self, rack_id: str, at: float, reading: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._live_state.touch(rack_id, at, reading)
        except Exception as e:
            self.stats.incr("live_state_failures")
            logger.warning("[PIPELINE] Live state update failed device=%s: %s", rack_id, e)

    def _live_state_get(self, rack_id: str):
        try:
            return self._live_state.get(rack_id)
        except Exception as e:
            logger.warning("[PIPELINE] Live state read failed device=%s: %s", rack_id, e)
            return None
