"""Audit trail for mutating actions.

Records one row per mutating action:
- Who: user_id (device owner)
- What: action + entity + entity_id
- Where: device_id
- When: created_at

If the table write fails, the record is emitted on the "audit" logger
instead so the trail is never silently lost.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import insert
from sqlalchemy.engine import Engine

from ..errors import PersistenceFailure
from .base import transaction, utcnow
from .schema import audit_records

logger = logging.getLogger(__name__)

LOG_CREATE = "ingredient_log.create"
ALERT_CREATE = "alert.create"
ALERT_ACKNOWLEDGE = "alert.acknowledge"


class AuditLogger:
    def __init__(self, engine: Engine):
        self._engine = engine
        self._fallback_logger = logging.getLogger("audit")

    def record(
        self,
        action: str,
        entity: str,
        entity_id: Optional[int] = None,
        *,
        user_id: Optional[int] = None,
        device_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        created_at = utcnow()
        try:
            with transaction(self._engine, "audit append") as conn:
                conn.execute(
                    insert(audit_records).values(
                        action=action,
                        entity=entity,
                        entity_id=entity_id,
                        user_id=user_id,
                        device_id=device_id,
                        details=details or {},
                        created_at=created_at,
                    )
                )
            return
        except PersistenceFailure as e:
            logger.warning("[AUDIT] Failed to write audit record: %s", e)

        # Fallback: structured log line
        self._fallback_logger.info(
            "AUDIT",
            extra={
                "action": action,
                "entity": entity,
                "entity_id": entity_id,
                "user_id": user_id,
                "device_id": device_id,
                "details": details or {},
                "created_at": created_at.isoformat(),
            },
        )
