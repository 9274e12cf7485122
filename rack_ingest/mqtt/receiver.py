"""MQTT receiver.

Subscribes to <namespace>/# with paho-mqtt (QoS 1, at-least-once) and
feeds every message through MessageHandler: parsing happens on the paho
thread, pipeline work on the AsyncMessageProcessor workers.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import paho.mqtt.client as mqtt

from ..errors import MalformedPayload
from .async_processor import AsyncMessageProcessor
from .message_handler import MessageHandler
from .receiver_stats import MQTT_MESSAGES_RECEIVED, MQTT_RECEIVER_CONNECTED

logger = logging.getLogger(__name__)


class MQTTReceiver:
    def __init__(
        self,
        handler: MessageHandler,
        processor: Optional[AsyncMessageProcessor] = None,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "rack-ingest",
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.client_id = f"{client_id}-{int(time.time())}"

        self._handler = handler
        self._processor = processor
        self._client: Optional[mqtt.Client] = None
        self._running = False
        self._connected = False

    def start(self, wait_seconds: float = 5.0) -> bool:
        """Connects and starts the paho network loop. Reconnects are automatic."""
        try:
            self._client = mqtt.Client(
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            if self.username and self.password:
                self._client.username_pw_set(self.username, self.password)
            self._client.reconnect_delay_set(min_delay=1, max_delay=30)

            logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
            self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
            self._client.loop_start()
            self._running = True
        except Exception as e:
            logger.exception("[MQTT] Start failed: %s", e)
            return False

        deadline = time.monotonic() + wait_seconds
        while not self._connected and time.monotonic() < deadline:
            time.sleep(0.1)

        if self._connected:
            logger.info("[MQTT] Started successfully")
        else:
            logger.warning("[MQTT] Not connected after %.1fs, retrying in background", wait_seconds)
        return self._connected

    def stop(self) -> None:
        self._running = False
        if self._client:
            try:
                self._client.loop_stop()
                self._client.disconnect()
            except Exception as e:
                logger.warning("[MQTT] Error stopping: %s", e)
        logger.info("[MQTT] Stopped. %s", self._handler.stats)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._connected = False
            MQTT_RECEIVER_CONNECTED.set(0)
            logger.error("[MQTT] Connection failed: %s", reason_code)
            return
        self._connected = True
        MQTT_RECEIVER_CONNECTED.set(1)
        topic = self._handler.subscription
        client.subscribe(topic, qos=1)
        logger.info("[MQTT] Connected, subscribed to %s", topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected = False
        MQTT_RECEIVER_CONNECTED.set(0)
        logger.warning("[MQTT] Disconnected (%s)", reason_code)

    def _on_message(self, client, userdata, msg):
        stats = self._handler.stats
        stats.incr("received")
        stats.last_message_at = time.time()

        try:
            message = self._handler.parse(msg.topic, msg.payload)
        except MalformedPayload as e:
            stats.incr("malformed")
            MQTT_MESSAGES_RECEIVED.labels(status="validation_error").inc()
            logger.warning("[MQTT] Dropped: %s", e)
            return

        if self._processor is None:
            self._handler.dispatch(message)
        elif not self._processor.enqueue(message):
            stats.incr("failed")
            MQTT_MESSAGES_RECEIVED.labels(status="dropped").inc()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> dict:
        out = {
            "running": self._running,
            "connected": self._connected,
            "broker": f"{self.broker_host}:{self.broker_port}",
            "subscription": self._handler.subscription,
            **self._handler.stats.to_dict(),
        }
        if self._processor is not None:
            out["async"] = self._processor.metrics
        return out
