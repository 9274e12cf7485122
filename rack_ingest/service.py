"""Service lifecycle.

start() builds, in order: engine + schema, live state cache, background
task queue, notification fan-out, alert deduplicator, classifier,
pipeline, heartbeat monitor, MQTT worker pool and receiver. stop() tears
them down in reverse, draining the queues.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from rack_common.config import Settings, get_settings
from rack_common.db import dispose_engine, get_engine

from .alerts.deduplicator import AlertDeduplicator
from .classification import ClassifierThresholds, EventClassifier
from .heartbeat import HeartbeatMonitor
from .live_state import LiveStateCache, create_live_state_cache
from .mqtt.async_processor import AsyncMessageProcessor
from .mqtt.message_handler import MessageHandler
from .mqtt.receiver import MQTTReceiver
from .notifications.broadcaster import RealtimeBroadcaster
from .notifications.service import NotificationService
from .notifications.task_queue import BackgroundTaskQueue
from .notifications.webhook import WebhookDispatcher
from .persistence.alerts import AlertRepository
from .persistence.audit import AuditLogger
from .persistence.devices import DeviceRepository
from .persistence.schema import ensure_schema
from .persistence.slots import SlotRepository
from .pipeline.ingestion import IngestionPipeline

logger = logging.getLogger(__name__)


class IngestionService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[Engine] = None,
        live_state: Optional[LiveStateCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self._engine = engine
        self._owns_engine = engine is None
        self._live_state = live_state
        self._clock = clock

        self.tasks: Optional[BackgroundTaskQueue] = None
        self.broadcaster: Optional[RealtimeBroadcaster] = None
        self.webhooks: Optional[WebhookDispatcher] = None
        self.notifications: Optional[NotificationService] = None
        self.alerts: Optional[AlertDeduplicator] = None
        self.pipeline: Optional[IngestionPipeline] = None
        self.monitor: Optional[HeartbeatMonitor] = None
        self.handler: Optional[MessageHandler] = None
        self.processor: Optional[AsyncMessageProcessor] = None
        self.receiver: Optional[MQTTReceiver] = None
        self._started = False

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    @property
    def live_state(self) -> Optional[LiveStateCache]:
        return self._live_state

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        s = self.settings

        if self._engine is None:
            self._engine = get_engine(s)
        ensure_schema(self._engine)

        if self._live_state is None:
            self._live_state = create_live_state_cache(s)

        self.tasks = BackgroundTaskQueue(
            max_queue_size=s.notify_queue_size,
            num_workers=s.notify_num_workers,
        )
        self.tasks.start()

        devices = DeviceRepository(self._engine)
        slots = SlotRepository(self._engine)

        self.broadcaster = RealtimeBroadcaster()
        self.webhooks = WebhookDispatcher(timeout_seconds=s.webhook_timeout_seconds)
        self.notifications = NotificationService(
            self.broadcaster,
            self.webhooks,
            AuditLogger(self._engine),
            devices,
            tasks=self.tasks,
        )
        self.alerts = AlertDeduplicator(AlertRepository(self._engine), self.notifications)

        self.pipeline = IngestionPipeline(
            devices=devices,
            slots=slots,
            live_state=self._live_state,
            classifier=EventClassifier(ClassifierThresholds.from_settings(s)),
            alerts=self.alerts,
            notifications=self.notifications,
            clock=self._clock,
        )

        self.monitor = HeartbeatMonitor(
            devices,
            self._live_state,
            self.alerts,
            self.notifications,
            offline_threshold=s.offline_threshold_seconds,
            sweep_interval=s.sweep_interval_seconds,
            check_timeout=s.check_timeout_seconds,
            clock=self._clock,
        )
        self.monitor.start()

        self.handler = MessageHandler(self.pipeline, namespace=s.mqtt_topic_namespace)
        if s.mqtt_enabled:
            self.processor = AsyncMessageProcessor(
                self.handler,
                max_queue_size=s.ingest_queue_size,
                num_workers=s.ingest_num_workers,
            )
            self.processor.start()
            self.receiver = MQTTReceiver(
                self.handler,
                self.processor,
                broker_host=s.mqtt_broker_host,
                broker_port=s.mqtt_broker_port,
                username=s.mqtt_username,
                password=s.mqtt_password,
            )
            self.receiver.start()
        else:
            logger.info("[SERVICE] MQTT disabled (MQTT_ENABLED=false)")

        self._started = True
        logger.info("[SERVICE] Started")

    def stop(self) -> None:
        if not self._started:
            return

        if self.receiver is not None:
            self.receiver.stop()
            self.receiver = None
        if self.processor is not None:
            self.processor.stop(drain=True)
            self.processor = None
        if self.monitor is not None:
            self.monitor.stop()
        if self.tasks is not None:
            self.tasks.stop(drain=True)
        if self.webhooks is not None:
            self.webhooks.close()
        if self._live_state is not None:
            self._live_state.close()

        if self._owns_engine:
            dispose_engine()
            self._engine = None

        self._started = False
        logger.info("[SERVICE] Stopped")

    def ready(self) -> dict:
        """Readiness: DB reachable and, when enabled, MQTT connected."""
        db_ok = False
        if self._engine is not None:
            try:
                with self._engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                db_ok = True
            except Exception as e:
                logger.warning("[SERVICE] Readiness DB probe failed: %s", e)

        mqtt_ok = (not self.settings.mqtt_enabled) or (
            self.receiver is not None and self.receiver.is_connected
        )
        return {
            "ready": self._started and db_ok and mqtt_ok,
            "database": db_ok,
            "mqtt": mqtt_ok,
        }

    def metrics(self) -> dict:
        out: dict = {"started": self._started}
        if self.pipeline is not None:
            out["pipeline"] = self.pipeline.stats.to_dict()
        if self.alerts is not None:
            out["alerts"] = self.alerts.stats
        if self.monitor is not None:
            out["heartbeat"] = self.monitor.metrics
        if self.tasks is not None:
            out["tasks"] = self.tasks.metrics
        if self.broadcaster is not None:
            out["realtime"] = self.broadcaster.stats
        if self.webhooks is not None:
            out["webhooks"] = self.webhooks.metrics
        if self.receiver is not None:
            out["mqtt"] = self.receiver.stats
        elif self.handler is not None:
            out["mqtt"] = self.handler.stats.to_dict()
        if self._live_state is not None:
            try:
                out["tracked_devices"] = len(self._live_state)
            except Exception as e:
                logger.warning("[SERVICE] Live state size unavailable: %s", e)
        return out
