"""Real-time broadcast to connected subscribers.

Best effort: every subscriber owns a bounded queue and a full queue drops
the event for that subscriber only, so a slow consumer never blocks the
ingestion worker calling broadcast().
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

UPDATE = "update"
DEVICE_STATUS = "deviceStatus"
ALERT = "alert"
NFC_EVENT = "nfcEvent"
COMMAND_RESPONSE = "commandResponse"

CHANNELS = (UPDATE, DEVICE_STATUS, ALERT, NFC_EVENT, COMMAND_RESPONSE)

Frame = Tuple[str, Dict[str, Any]]


class Subscriber(ABC):
    @abstractmethod
    def offer(self, event: str, payload: Dict[str, Any]) -> bool:
        """Non-blocking delivery. Returns False if the event was dropped."""


class QueueSubscriber(Subscriber):
    """Thread-side subscriber backed by a bounded queue.Queue."""

    def __init__(self, max_size: int = 256):
        self.queue: "queue.Queue[Frame]" = queue.Queue(maxsize=max_size)

    def offer(self, event: str, payload: Dict[str, Any]) -> bool:
        try:
            self.queue.put_nowait((event, payload))
            return True
        except queue.Full:
            return False

    def drain(self) -> List[Frame]:
        frames: List[Frame] = []
        while True:
            try:
                frames.append(self.queue.get_nowait())
            except queue.Empty:
                return frames


class AsyncioQueueSubscriber(Subscriber):
    """Bridges worker threads to an asyncio consumer (WebSocket client)."""

    def __init__(self, loop: asyncio.AbstractEventLoop, max_size: int = 256):
        self._loop = loop
        self.queue: "asyncio.Queue[Frame]" = asyncio.Queue(maxsize=max_size)
        self._dropped = 0

    def offer(self, event: str, payload: Dict[str, Any]) -> bool:
        if self.queue.full():
            self._dropped += 1
            return False
        try:
            self._loop.call_soon_threadsafe(self._put, (event, payload))
        except RuntimeError:
            # Event loop already closed.
            return False
        return True

    def _put(self, frame: Frame) -> None:
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._dropped += 1

    @property
    def dropped(self) -> int:
        return self._dropped


class RealtimeBroadcaster:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._sent = 0
        self._dropped = 0

    def subscribe(self, subscriber: Optional[Subscriber] = None, max_size: int = 256) -> Subscriber:
        subscriber = subscriber or QueueSubscriber(max_size=max_size)
        with self._lock:
            self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def broadcast(self, event: str, payload: Dict[str, Any]) -> int:
        """Offer the event to every subscriber. Returns how many accepted it."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for sub in subscribers:
            try:
                accepted = sub.offer(event, payload)
            except Exception as e:
                accepted = False
                logger.warning("[REALTIME] Subscriber error event=%s: %s", event, e)
            if accepted:
                delivered += 1

        with self._lock:
            self._sent += delivered
            self._dropped += len(subscribers) - delivered
        return delivered

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "subscribers": len(self._subscribers),
                "sent": self._sent,
                "dropped": self._dropped,
            }
