"""Command/response side channel.

Devices answer commands (mostly NFC tag operations) on the same topics
as telemetry:

- read                          → parse the tag content, update the slot, nfcEvent
- write, clear, format, removed → nfcEvent of that type
- anything else                 → commandResponse
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Optional, Union

import orjson

from ..errors import PersistenceFailure
from ..notifications.broadcaster import COMMAND_RESPONSE, NFC_EVENT
from ..notifications.service import NotificationService
from ..persistence.base import from_epoch
from ..persistence.models import DeviceRecord
from ..persistence.slots import SlotRepository

logger = logging.getLogger(__name__)

NFC_COMMANDS = frozenset({"read", "write", "clear", "format", "removed"})

_PAIR_SEPARATORS = re.compile(r"[;,|]")
_PAIR = re.compile(r"^\s*([^:=]+?)\s*[:=]\s*(.*?)\s*$")

_TAG_KEYS = ("TAGUID", "UID", "TAG", "TAGID")
_INGREDIENT_KEYS = ("INGREDIENT", "INGREDIENTNAME", "NAME", "ING")


def parse_response(response: Union[str, dict, None]) -> Dict[str, Any]:
    """Tag content as a dict.

    Accepts a JSON object or KEY:VALUE / KEY=VALUE pairs separated by
    ';', ',' or '|'. Unparseable content gives an empty dict.
    """
    if response is None:
        return {}
    if isinstance(response, dict):
        return dict(response)

    text = str(response).strip()
    if text.startswith("{"):
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data

    pairs: Dict[str, Any] = {}
    for part in _PAIR_SEPARATORS.split(text):
        match = _PAIR.match(part)
        if match and match.group(1):
            pairs[match.group(1)] = match.group(2)
    return pairs


def _lookup(content: Dict[str, Any], keys) -> Optional[str]:
    normalized = {re.sub(r"[\s_\-]", "", str(k)).upper(): v for k, v in content.items()}
    for key in keys:
        value = normalized.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return None


class CommandHandler:
    def __init__(
        self,
        slots: SlotRepository,
        notifications: NotificationService,
        clock: Callable[[], float] = time.time,
    ):
        self._slots = slots
        self._notifications = notifications
        self._clock = clock

    def handle(self, device: DeviceRecord, message) -> str:
        """Routes a command/response pair. Returns the channel it was emitted on.

        `message` is a TelemetryMessage or CommandResponseMessage.
        """
        command = (message.command or "").strip().lower()
        timestamp = (message.timestamp or from_epoch(self._clock())).isoformat()

        if command == "read":
            self._handle_read(device, message, timestamp)
            return NFC_EVENT

        if command in NFC_COMMANDS:
            self._notifications.emit(
                NFC_EVENT,
                {
                    "type": command,
                    "deviceId": device.rack_id,
                    "slotId": message.slot_id,
                    "tagUID": message.tag_uid,
                    "ingredient": message.ingredient_name,
                    "response": message.response,
                    "timestamp": timestamp,
                },
            )
            return NFC_EVENT

        self._notifications.emit(
            COMMAND_RESPONSE,
            {
                "deviceId": device.rack_id,
                "command": message.command,
                "response": message.response,
                "timestamp": timestamp,
            },
        )
        return COMMAND_RESPONSE

    def _handle_read(self, device: DeviceRecord, message, timestamp: str) -> None:
        content = parse_response(message.response)
        tag_uid = _lookup(content, _TAG_KEYS) or message.tag_uid
        ingredient = _lookup(content, _INGREDIENT_KEYS) or message.ingredient_name

        if message.slot_id and (tag_uid or ingredient):
            try:
                self._slots.upsert_status(
                    device.id,
                    message.slot_id,
                    from_epoch(self._clock()),
                    ingredient=ingredient,
                    tag_uid=tag_uid,
                )
            except PersistenceFailure as e:
                logger.error("[COMMANDS] Slot update after read failed device=%s: %s", device.rack_id, e)
        elif not message.slot_id:
            logger.debug("[COMMANDS] read without slotId from device=%s, slot not updated", device.rack_id)

        self._notifications.emit(
            NFC_EVENT,
            {
                "type": "read",
                "deviceId": device.rack_id,
                "slotId": message.slot_id,
                "tagUID": tag_uid,
                "ingredient": ingredient,
                "response": message.response,
                "timestamp": timestamp,
            },
        )
