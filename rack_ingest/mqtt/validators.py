"""Payload validators for rack telemetry.

Topic shape: <namespace>/<deviceId>/<kind>

- heartbeat, status      → HeartbeatMessage
- response               → CommandResponseMessage
- weight, data, default  → TelemetryMessage (also any unknown kind)

Example telemetry payload:
{
    "deviceId": "RACK-01",
    "slotId": "2",
    "ingredientName": "Flour",
    "weight": 1530.5,
    "status": "OK",
    "timestamp": "2026-01-31T08:00:00Z",
    "tagUID": "04A1B2C3",
    "ip": "10.0.0.12",
    "firmwareVersion": "1.4.2"
}
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MalformedPayload

HEARTBEAT_KINDS = frozenset({"heartbeat", "status"})
RESPONSE_KIND = "response"
TELEMETRY_KINDS = frozenset({"weight", "data", "default"})
DEFAULT_KIND = "default"


@dataclass(frozen=True)
class RackTopic:
    namespace: str
    device_id: str
    kind: str

    @property
    def is_heartbeat(self) -> bool:
        return self.kind in HEARTBEAT_KINDS

    @property
    def is_response(self) -> bool:
        return self.kind == RESPONSE_KIND


def parse_topic(topic: str, namespace: str) -> RackTopic:
    parts = [p for p in topic.split("/") if p]
    if len(parts) < 2 or parts[0] != namespace:
        raise MalformedPayload("Unroutable topic", topic=topic)
    kind = parts[2].lower() if len(parts) > 2 else DEFAULT_KIND
    return RackTopic(namespace=parts[0], device_id=parts[1], kind=kind)


def _as_text(v: Any) -> Optional[str]:
    if v is None:
        return None
    text = str(v).strip()
    return text or None


def _as_response(v: Any) -> Union[str, dict, None]:
    """Devices answer with a JSON object, a string, or occasionally a bare number/list."""
    if v is None or isinstance(v, (str, dict)):
        return v
    return str(v)


class _RackMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    device_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("deviceId", "device_id"))
    timestamp: Optional[datetime] = None
    ip: Optional[str] = Field(default=None, validation_alias=AliasChoices("ip", "ipAddress"))
    firmware_version: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("firmwareVersion", "firmware_version")
    )

    @field_validator("device_id", "ip", "firmware_version", mode="before")
    @classmethod
    def validate_text(cls, v):
        return _as_text(v)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class HeartbeatMessage(_RackMessage):
    """Liveness only: no slot or reading fields."""


class TelemetryMessage(_RackMessage):
    slot_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("slotId", "slot_id"))
    ingredient_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ingredientName", "ingredient", "ingredient_name"),
    )
    weight: Optional[float] = None
    status: Optional[str] = None
    tag_uid: Optional[str] = Field(default=None, validation_alias=AliasChoices("tagUID", "tagUid", "tag_uid"))
    command: Optional[str] = None
    response: Optional[Union[str, dict]] = None

    @field_validator("slot_id", "ingredient_name", "status", "tag_uid", "command", mode="before")
    @classmethod
    def validate_text_fields(cls, v):
        return _as_text(v)

    @field_validator("response", mode="before")
    @classmethod
    def validate_response(cls, v):
        return _as_response(v)

    @field_validator("weight")
    @classmethod
    def validate_weight(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and (math.isnan(v) or math.isinf(v)):
            raise ValueError("weight must be a finite number")
        return v

    @property
    def has_ingredient(self) -> bool:
        return bool(self.ingredient_name)

    @property
    def has_command(self) -> bool:
        return bool(self.command)


class CommandResponseMessage(_RackMessage):
    slot_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("slotId", "slot_id"))
    command: str
    response: Optional[Union[str, dict]] = None
    tag_uid: Optional[str] = Field(default=None, validation_alias=AliasChoices("tagUID", "tagUid", "tag_uid"))
    ingredient_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ingredientName", "ingredient", "ingredient_name"),
    )

    @field_validator("slot_id", "command", "tag_uid", "ingredient_name", mode="before")
    @classmethod
    def validate_text_fields(cls, v):
        return _as_text(v)

    @field_validator("response", mode="before")
    @classmethod
    def validate_response(cls, v):
        return _as_response(v)


RackMessage = Union[TelemetryMessage, HeartbeatMessage, CommandResponseMessage]


def parse_message(topic: RackTopic, data: Any) -> RackMessage:
    """Validates a decoded payload for the topic kind.

    deviceId falls back to the topic segment when the payload omits it.
    Raises MalformedPayload on anything that does not validate.
    """
    if not isinstance(data, dict):
        raise MalformedPayload("Payload is not a JSON object")

    if topic.is_heartbeat:
        model = HeartbeatMessage
    elif topic.is_response:
        model = CommandResponseMessage
    else:
        model = TelemetryMessage

    try:
        message = model.model_validate(data)
    except ValidationError as e:
        raise MalformedPayload(f"{model.__name__} validation failed: {e.error_count()} error(s)") from e

    if not message.device_id:
        message = message.model_copy(update={"device_id": topic.device_id})
    return message
