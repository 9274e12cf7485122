"""Table definitions and schema bootstrap.

users/devices belong to the external registry; they are declared here so
the service can run stand-alone against an empty database.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    false,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()


users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(120)),
    Column("email", String(255), unique=True),
    Column("webhook_url", String(1024), nullable=True),
)

devices = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("rack_id", String(64), nullable=False, unique=True),
    Column("name", String(120), nullable=False, default=""),
    Column("owner_id", Integer, ForeignKey("users.id"), nullable=True),
    Column("is_online", Boolean, nullable=False, default=False),
    Column("last_seen", DateTime(timezone=True), nullable=True),
    Column("last_weight", Float, nullable=True),
    Column("last_status", String(32), nullable=True),
    Column("ip_address", String(64), nullable=True),
    Column("firmware_version", String(32), nullable=True),
)

slot_status = Table(
    "slot_status",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("device_id", Integer, ForeignKey("devices.id"), nullable=False),
    Column("slot_id", String(32), nullable=False),
    Column("ingredient", String(120), nullable=True),
    Column("tag_uid", String(64), nullable=True),
    Column("weight", Float, nullable=True),
    Column("status", String(32), nullable=True),
    Column("last_updated", DateTime(timezone=True), nullable=False),
    UniqueConstraint("device_id", "slot_id", name="uq_slot_status_device_slot"),
)

ingredient_logs = Table(
    "ingredient_logs",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("device_id", Integer, ForeignKey("devices.id"), nullable=False),
    Column("slot_id", String(32), nullable=False),
    Column("user_id", Integer, nullable=True),
    Column("ingredient", String(120), nullable=True),
    Column("tag_uid", String(64), nullable=True),
    Column("weight", Float, nullable=True),
    Column("status", String(32), nullable=True),
    Column("event_tag", String(32), nullable=True),
    Column("source", String(32), nullable=False, default="device"),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    # Retried deliveries of the same reading collide here.
    UniqueConstraint("device_id", "slot_id", "timestamp", name="uq_ingredient_logs_reading"),
)
Index(
    "ix_ingredient_logs_latest",
    ingredient_logs.c.device_id,
    ingredient_logs.c.slot_id,
    ingredient_logs.c.id,
)

alerts = Table(
    "alerts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("dedup_key", String(255), nullable=False),
    Column("type", String(32), nullable=False),
    Column("user_id", Integer, nullable=True),
    Column("device_id", Integer, ForeignKey("devices.id"), nullable=False),
    Column("slot_id", String(32), nullable=True),
    Column("ingredient", String(120), nullable=True),
    Column("details", JSON, nullable=True),
    Column("acknowledged", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("acknowledged_at", DateTime(timezone=True), nullable=True),
)
# At most one open alert per (key, type).
Index(
    "uq_alerts_open_key",
    alerts.c.dedup_key,
    alerts.c.type,
    unique=True,
    sqlite_where=alerts.c.acknowledged == false(),
    postgresql_where=alerts.c.acknowledged == false(),
)

audit_records = Table(
    "audit_records",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("action", String(64), nullable=False),
    Column("entity", String(64), nullable=False),
    Column("entity_id", Integer, nullable=True),
    Column("user_id", Integer, nullable=True),
    Column("device_id", Integer, nullable=True),
    Column("details", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def ensure_schema(engine: Engine) -> None:
    """Create missing tables and indexes. Safe to call multiple times."""
    logger.info("[DB] Ensuring schema exists")
    try:
        metadata.create_all(engine, checkfirst=True)
    except Exception as e:
        logger.exception("[DB] Schema creation failed: %s", e)
        raise
    logger.info("[DB] Schema ready")
