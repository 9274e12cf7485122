"""Message handling for the MQTT receiver.

parse() runs on the paho network thread: topic routing, JSON decode and
validation. process() runs on a worker and hands the typed message to
the ingestion pipeline.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Optional

import orjson

from ..errors import MalformedPayload
from .receiver_stats import MQTT_MESSAGES_RECEIVED, MQTT_PROCESSING_LATENCY, ReceiverStats
from .validators import (
    CommandResponseMessage,
    HeartbeatMessage,
    RackMessage,
    TelemetryMessage,
    parse_message,
    parse_topic,
)

if TYPE_CHECKING:
    from ..pipeline.ingestion import IngestionPipeline

logger = logging.getLogger(__name__)


def parse_json(payload: bytes, topic: str) -> Any:
    try:
        return orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise MalformedPayload(f"Invalid JSON: {e}", topic=topic) from e


class MessageHandler:
    def __init__(
        self,
        pipeline: "IngestionPipeline",
        namespace: str = "intellirack",
        stats: Optional[ReceiverStats] = None,
    ):
        self._pipeline = pipeline
        self._namespace = namespace
        self.stats = stats or ReceiverStats()

    @property
    def subscription(self) -> str:
        return f"{self._namespace}/#"

    def parse(self, topic: str, payload: bytes) -> RackMessage:
        """Raises MalformedPayload for anything that cannot be routed."""
        route = parse_topic(topic, self._namespace)
        data = parse_json(payload, topic)
        try:
            return parse_message(route, data)
        except MalformedPayload as e:
            raise MalformedPayload(e.reason, topic=topic) from e

    def process(self, message: RackMessage) -> None:
        if isinstance(message, HeartbeatMessage):
            self._pipeline.handle_heartbeat(message)
        elif isinstance(message, CommandResponseMessage):
            self._pipeline.handle_response(message)
        elif isinstance(message, TelemetryMessage):
            self._pipeline.handle_telemetry(message)
        else:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")

    def dispatch(self, message: RackMessage) -> bool:
        """process() with stats, latency and error containment. Never raises."""
        started = time.perf_counter()
        try:
            self.process(message)
        except Exception as e:
            self.stats.incr("failed")
            MQTT_MESSAGES_RECEIVED.labels(status="processing_error").inc()
            logger.exception("[MQTT] Processing error device=%s: %s", message.device_id, e)
            return False

        MQTT_PROCESSING_LATENCY.observe(time.perf_counter() - started)
        MQTT_MESSAGES_RECEIVED.labels(status="success").inc()
        self.stats.incr("processed")
        return True

    def handle(self, topic: str, payload: bytes) -> bool:
        """Synchronous parse + dispatch. Never raises."""
        self.stats.incr("received")
        try:
            message = self.parse(topic, payload)
        except MalformedPayload as e:
            self.stats.incr("malformed")
            MQTT_MESSAGES_RECEIVED.labels(status="validation_error").inc()
            logger.warning("[MQTT] Dropped: %s", e)
            return False
        return self.dispatch(message)
