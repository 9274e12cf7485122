"""Statistics for the MQTT receiver.

ReceiverStats feeds the JSON /metrics endpoint; the Prometheus series
below are exported on /metrics/prometheus.
"""

from __future__ import annotations

import threading

from prometheus_client import Counter, Gauge, Histogram

MQTT_MESSAGES_RECEIVED = Counter(
    "rack_mqtt_messages_received_total",
    "Total MQTT messages received",
    ["status"],  # success, validation_error, processing_error, dropped
)
MQTT_PROCESSING_LATENCY = Histogram(
    "rack_mqtt_processing_seconds",
    "Pipeline processing latency per MQTT message",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
MQTT_RECEIVER_CONNECTED = Gauge(
    "rack_mqtt_receiver_connected",
    "MQTT receiver connection status",
)


class ReceiverStats:
    def __init__(self):
        self._lock = threading.Lock()
        self.received = 0
        self.processed = 0
        self.failed = 0
        self.malformed = 0
        self.last_message_at: float = 0

    def incr(self, name: str, n: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + n)

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"failed={self.failed} malformed={self.malformed}"
        )

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "failed": self.failed,
                "malformed": self.malformed,
                "last_message_at": self.last_message_at,
            }
