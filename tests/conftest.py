"""Shared fixtures: temp SQLite database with the real schema, a seeded
rack, a controllable clock and the notification stack wired inline
(no background queue) so side effects are visible when a call returns.
"""

from typing import Any, Dict
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, insert, select

from rack_common.db import build_engine
from rack_ingest.alerts import AlertDeduplicator
from rack_ingest.classification import EventClassifier
from rack_ingest.live_state import InMemoryLiveStateCache
from rack_ingest.mqtt.validators import TelemetryMessage
from rack_ingest.notifications import NotificationService, RealtimeBroadcaster, WebhookDispatcher
from rack_ingest.persistence import (
    AlertRepository,
    AuditLogger,
    DeviceRepository,
    SlotRepository,
    ensure_schema,
)
from rack_ingest.persistence.schema import devices as devices_table
from rack_ingest.persistence.schema import users as users_table
from rack_ingest.pipeline import IngestionPipeline

RACK_ID = "RACK-01"
WEBHOOK_URL = "http://hooks.test/rack-alerts"


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def count_rows(engine, table, **where) -> int:
    stmt = select(func.count()).select_from(table)
    for column, value in where.items():
        stmt = stmt.where(table.c[column] == value)
    with engine.connect() as conn:
        return int(conn.execute(stmt).scalar_one())


def telemetry(**fields: Any) -> TelemetryMessage:
    data: Dict[str, Any] = {"deviceId": RACK_ID, "slotId": "1", "ingredientName": "Flour"}
    data.update(fields)
    return TelemetryMessage.model_validate(data)


# =============================================================================
# STORAGE
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    eng = build_engine(f"sqlite:///{tmp_path / 'rack.db'}")
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def owner_id(engine) -> int:
    with engine.begin() as conn:
        result = conn.execute(
            insert(users_table).values(name="Owner", email="owner@example.com", webhook_url=WEBHOOK_URL)
        )
        return int(result.inserted_primary_key[0])


@pytest.fixture
def device(engine, owner_id):
    with engine.begin() as conn:
        conn.execute(
            insert(devices_table).values(rack_id=RACK_ID, name="Pantry rack", owner_id=owner_id, is_online=False)
        )
    return DeviceRepository(engine).get_by_rack_id(RACK_ID)


@pytest.fixture
def device_repo(engine) -> DeviceRepository:
    return DeviceRepository(engine)


@pytest.fixture
def slot_repo(engine) -> SlotRepository:
    return SlotRepository(engine)


@pytest.fixture
def alert_repo(engine) -> AlertRepository:
    return AlertRepository(engine)


# =============================================================================
# NOTIFICATIONS / ALERTS
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def http_session():
    """requests.Session double; every POST succeeds unless a test says otherwise."""
    session = MagicMock()
    session.post.return_value = MagicMock(status_code=200)
    return session


@pytest.fixture
def broadcaster() -> RealtimeBroadcaster:
    return RealtimeBroadcaster()


@pytest.fixture
def subscriber(broadcaster):
    return broadcaster.subscribe(max_size=1000)


@pytest.fixture
def notifications(engine, broadcaster, http_session, device_repo) -> NotificationService:
    return NotificationService(
        broadcaster,
        WebhookDispatcher(timeout_seconds=1.0, session=http_session),
        AuditLogger(engine),
        device_repo,
        tasks=None,
    )


@pytest.fixture
def deduplicator(alert_repo, notifications) -> AlertDeduplicator:
    return AlertDeduplicator(alert_repo, notifications)


# =============================================================================
# PIPELINE
# =============================================================================

@pytest.fixture
def live_state() -> InMemoryLiveStateCache:
    return InMemoryLiveStateCache()


@pytest.fixture
def pipeline(device, device_repo, slot_repo, live_state, deduplicator, notifications, clock) -> IngestionPipeline:
    return IngestionPipeline(
        devices=device_repo,
        slots=slot_repo,
        live_state=live_state,
        classifier=EventClassifier(),
        alerts=deduplicator,
        notifications=notifications,
        clock=clock,
    )
