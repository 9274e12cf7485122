"""Single-attempt webhook delivery.

Posts the alert to the URL the device owner configured. Never retried,
never raises: failures are logged and dropped.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

import requests

from ..errors import NotificationFailure

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    def __init__(self, timeout_seconds: float = 5.0, session: Optional[requests.Session] = None):
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self.sent = 0
        self.failed = 0

    def send(self, url: str, payload: Dict[str, Any]) -> bool:
        try:
            self._post(url, payload)
        except NotificationFailure as e:
            with self._lock:
                self.failed += 1
            logger.warning("[WEBHOOK] %s url=%s", e, url)
            return False

        with self._lock:
            self.sent += 1
        logger.info("[WEBHOOK] Delivered alertType=%s", payload.get("alertType"))
        return True

    def _post(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            response = self._session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except Exception as e:
            raise NotificationFailure("webhook", e) from e

    @property
    def metrics(self) -> dict:
        with self._lock:
            return {"sent": self.sent, "failed": self.failed}

    def close(self) -> None:
        self._session.close()
