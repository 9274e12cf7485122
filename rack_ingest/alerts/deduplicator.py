"""Alert deduplicator.

Keeps at most one unacknowledged alert per (subject key, type):
- open alert with the same key → no-op
- otherwise create it, audit it and fan out notifications

The lookup and the insert run under a per-key lock; the partial unique
index on the alerts table covers races between processes, where the
losing insert fails with IntegrityError and is treated as a no-op.
Only acknowledgement makes a key eligible again.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from ..locks import KeyedLocks
from ..notifications.service import NotificationService
from ..persistence.alerts import AlertRepository
from ..persistence.audit import ALERT_ACKNOWLEDGE, ALERT_CREATE
from ..persistence.models import AlertRecord
from .models import AlertSubject, AlertType

logger = logging.getLogger(__name__)


class AlertDeduplicator:
    def __init__(
        self,
        alerts: AlertRepository,
        notifications: NotificationService,
        locks: Optional[KeyedLocks] = None,
    ):
        self._alerts = alerts
        self._notifications = notifications
        self._locks = locks or KeyedLocks()

        self._stats_lock = threading.Lock()
        self._created = 0
        self._suppressed = 0

    def raise_alert(
        self,
        subject: AlertSubject,
        alert_type: AlertType,
        *,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
    ) -> Optional[AlertRecord]:
        """Creates the alert unless one is already open for the key.

        Returns the new alert, or None when it was deduplicated.
        PersistenceFailure propagates to the caller.
        """
        key = subject.dedup_key
        type_value = AlertType(alert_type).value

        with self._locks.hold((key, type_value)):
            existing = self._alerts.find_open(key, type_value)
            if existing is not None:
                self._count(created=False)
                logger.debug("[ALERTS] Open alert id=%s key=%s type=%s, skipped", existing.id, key, type_value)
                return None

            try:
                alert = self._alerts.create(
                    dedup_key=key,
                    alert_type=type_value,
                    device_id=subject.device_id,
                    user_id=subject.user_id,
                    slot_id=subject.slot_id,
                    ingredient=subject.ingredient,
                    details=details,
                )
            except IntegrityError:
                self._count(created=False)
                logger.info("[ALERTS] Concurrent create lost key=%s type=%s, skipped", key, type_value)
                return None

        self._count(created=True)
        logger.info(
            "[ALERTS] Created id=%s type=%s device=%s slot=%s ingredient=%s",
            alert.id, type_value, subject.rack_id, subject.slot_id, subject.ingredient,
        )

        self._notifications.audit(
            ALERT_CREATE,
            "alert",
            alert.id,
            user_id=subject.user_id,
            device_id=subject.device_id,
            details={"type": type_value, "dedupKey": key, **(details or {})},
        )
        self._notifications.alert_raised(alert, subject.rack_id, status)
        return alert

    def acknowledge(self, alert_id: int) -> Optional[AlertRecord]:
        """Closes the alert. Its key may raise a new alert afterwards."""
        alert = self._alerts.acknowledge(alert_id)
        if alert is None:
            return None
        logger.info("[ALERTS] Acknowledged id=%s type=%s key=%s", alert.id, alert.type, alert.dedup_key)
        self._notifications.audit(
            ALERT_ACKNOWLEDGE,
            "alert",
            alert.id,
            user_id=alert.user_id,
            device_id=alert.device_id,
            details={"type": alert.type, "dedupKey": alert.dedup_key},
        )
        return alert

    def _count(self, created: bool) -> None:
        with self._stats_lock:
            if created:
                self._created += 1
            else:
                self._suppressed += 1

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            return {"created": self._created, "suppressed": self._suppressed}
