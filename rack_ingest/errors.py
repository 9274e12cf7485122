"""Exception taxonomy for the ingestion service.

None of these propagate to the MQTT consumer loop: each event is an
isolated unit of work and failures are only visible through logging and
the counters exposed on /metrics.
"""

from __future__ import annotations

from typing import Optional


class RackIngestError(Exception):
    """Base class for ingestion errors."""


class UnknownDevice(RackIngestError):
    """Telemetry for a rack identifier that is not registered."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device not registered: {device_id}")


class MalformedPayload(RackIngestError):
    """Undecodable JSON, unroutable topic or failed validation."""

    def __init__(self, reason: str, topic: Optional[str] = None):
        self.reason = reason
        self.topic = topic
        super().__init__(f"{reason} (topic={topic})" if topic else reason)


class PersistenceFailure(RackIngestError):
    """A storage operation failed; prior state is left untouched."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {type(cause).__name__}: {cause}")


class NotificationFailure(RackIngestError):
    """Real-time or webhook delivery failed. Always swallowed by callers."""

    def __init__(self, channel: str, cause: Exception):
        self.channel = channel
        self.cause = cause
        super().__init__(f"{channel} delivery failed: {type(cause).__name__}: {cause}")
