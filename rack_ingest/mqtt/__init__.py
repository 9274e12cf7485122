"""MQTT ingress.

- validators.py: topic routing + pydantic message models
- message_handler.py: decode, validate, dispatch to the pipeline
- async_processor.py: bounded queue + worker threads
- receiver.py: paho-mqtt client
"""

from .async_processor import AsyncMessageProcessor
from .message_handler import MessageHandler, parse_json
from .receiver import MQTTReceiver
from .receiver_stats import ReceiverStats
from .validators import (
    CommandResponseMessage,
    HeartbeatMessage,
    RackMessage,
    RackTopic,
    TelemetryMessage,
    parse_message,
    parse_topic,
)

__all__ = [
    "AsyncMessageProcessor",
    "MessageHandler",
    "parse_json",
    "MQTTReceiver",
    "ReceiverStats",
    "CommandResponseMessage",
    "HeartbeatMessage",
    "RackMessage",
    "RackTopic",
    "TelemetryMessage",
    "parse_message",
    "parse_topic",
]
