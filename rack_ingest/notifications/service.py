"""Notification fan-out.

Two channels plus the audit trail:
- real-time broadcast: synchronous, best effort
- webhook: scheduled on the background queue, single attempt
- audit writes: scheduled on the background queue
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..persistence.audit import AuditLogger
from ..persistence.devices import DeviceRepository
from ..persistence.models import AlertRecord
from .broadcaster import ALERT, RealtimeBroadcaster
from .task_queue import BackgroundTaskQueue, run_in_background
from .webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        broadcaster: RealtimeBroadcaster,
        webhooks: WebhookDispatcher,
        audit: AuditLogger,
        devices: DeviceRepository,
        tasks: Optional[BackgroundTaskQueue] = None,
    ):
        self._broadcaster = broadcaster
        self._webhooks = webhooks
        self._audit = audit
        self._devices = devices
        self._tasks = tasks

    @property
    def broadcaster(self) -> RealtimeBroadcaster:
        return self._broadcaster

    def emit(self, channel: str, payload: Dict[str, Any]) -> None:
        try:
            self._broadcaster.broadcast(channel, payload)
        except Exception as e:
            logger.warning("[NOTIFY] Broadcast failed channel=%s: %s", channel, e)

    def audit(
        self,
        action: str,
        entity: str,
        entity_id: Optional[int] = None,
        *,
        user_id: Optional[int] = None,
        device_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        run_in_background(
            self._tasks,
            f"audit:{action}",
            self._audit.record,
            action,
            entity,
            entity_id,
            user_id=user_id,
            device_id=device_id,
            details=details,
        )

    def alert_raised(self, alert: AlertRecord, rack_id: str, status: Optional[str] = None) -> None:
        self.emit(
            ALERT,
            {
                "deviceId": rack_id,
                "slotId": alert.slot_id,
                "ingredient": alert.ingredient,
                "status": status or alert.type,
            },
        )
        run_in_background(self._tasks, "webhook", self._deliver_webhook, alert, rack_id)

    def _deliver_webhook(self, alert: AlertRecord, rack_id: str) -> None:
        try:
            url = self._devices.get_webhook_url(alert.user_id)
        except Exception as e:
            logger.warning("[NOTIFY] Webhook lookup failed alert=%s: %s", alert.id, e)
            return
        if not url:
            return

        payload: Dict[str, Any] = {
            "alertType": alert.type,
            "device": rack_id,
            "user": alert.user_id,
        }
        if alert.ingredient:
            payload["ingredient"] = alert.ingredient
        if alert.slot_id:
            payload["slotId"] = alert.slot_id
        if alert.details:
            payload["alertDetails"] = alert.details

        self._webhooks.send(url, payload)
