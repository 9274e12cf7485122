"""Live state cache: deviceId → last heartbeat, last reading, liveness state.

Owned by the ingestion service and injected into the pipeline and the
heartbeat monitor. Writes are per-key timestamp updates with no
multi-field invariants, so a locked dict (or a Redis hash per device)
is enough.

Implementations:
- InMemoryLiveStateCache: single process
- RedisLiveStateCache: shared between replicas
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import orjson
import redis

from rack_common.config import Settings

logger = logging.getLogger(__name__)


class Liveness(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


@dataclass(frozen=True)
class LiveStateEntry:
    device_id: str
    last_heartbeat: float
    state: Liveness = Liveness.ONLINE
    reading: Dict[str, Any] = field(default_factory=dict)


class LiveStateCache(ABC):
    @abstractmethod
    def touch(self, device_id: str, at: float, reading: Optional[Dict[str, Any]] = None) -> None:
        """Refresh the heartbeat (and last reading). Liveness state is kept."""

    @abstractmethod
    def get(self, device_id: str) -> Optional[LiveStateEntry]:
        pass

    @abstractmethod
    def set_state(self, device_id: str, state: Liveness) -> None:
        pass

    @abstractmethod
    def items(self) -> List[Tuple[str, LiveStateEntry]]:
        """Point-in-time snapshot of all entries."""

    @abstractmethod
    def remove(self, device_id: str) -> None:
        pass

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self.items())


class InMemoryLiveStateCache(LiveStateCache):
    def __init__(self) -> None:
        self._entries: Dict[str, LiveStateEntry] = {}
        self._lock = threading.Lock()

    def touch(self, device_id: str, at: float, reading: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            current = self._entries.get(device_id)
            if current is None:
                self._entries[device_id] = LiveStateEntry(
                    device_id=device_id,
                    last_heartbeat=at,
                    reading=dict(reading or {}),
                )
                return
            self._entries[device_id] = replace(
                current,
                last_heartbeat=max(at, current.last_heartbeat),
                reading=dict(reading) if reading else current.reading,
            )

    def get(self, device_id: str) -> Optional[LiveStateEntry]:
        with self._lock:
            return self._entries.get(device_id)

    def set_state(self, device_id: str, state: Liveness) -> None:
        with self._lock:
            current = self._entries.get(device_id)
            if current is not None:
                self._entries[device_id] = replace(current, state=state)

    def items(self) -> List[Tuple[str, LiveStateEntry]]:
        with self._lock:
            return list(self._entries.items())

    def remove(self, device_id: str) -> None:
        with self._lock:
            self._entries.pop(device_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisLiveStateCache(LiveStateCache):
    """One hash per device: last_heartbeat, state, reading (JSON)."""

    KEY_PREFIX = "rack:live:"

    def __init__(self, client: "redis.Redis"):
        self._redis = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisLiveStateCache":
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        client.ping()
        return cls(client)

    def _key(self, device_id: str) -> str:
        return f"{self.KEY_PREFIX}{device_id}"

    def touch(self, device_id: str, at: float, reading: Optional[Dict[str, Any]] = None) -> None:
        key = self._key(device_id)
        mapping: Dict[str, Any] = {"last_heartbeat": repr(float(at))}
        if reading:
            mapping["reading"] = orjson.dumps(reading, default=str).decode()
        pipe = self._redis.pipeline()
        pipe.hset(key, mapping=mapping)
        pipe.hsetnx(key, "state", Liveness.ONLINE.value)
        pipe.execute()

    def get(self, device_id: str) -> Optional[LiveStateEntry]:
        data = self._redis.hgetall(self._key(device_id))
        return self._to_entry(device_id, data)

    def set_state(self, device_id: str, state: Liveness) -> None:
        key = self._key(device_id)
        if self._redis.exists(key):
            self._redis.hset(key, "state", state.value)

    def items(self) -> List[Tuple[str, LiveStateEntry]]:
        out: List[Tuple[str, LiveStateEntry]] = []
        for key in self._redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
            device_id = key[len(self.KEY_PREFIX):]
            entry = self._to_entry(device_id, self._redis.hgetall(key))
            if entry is not None:
                out.append((device_id, entry))
        return out

    def remove(self, device_id: str) -> None:
        self._redis.delete(self._key(device_id))

    def close(self) -> None:
        try:
            self._redis.close()
        except Exception as e:
            logger.warning("[LIVE_STATE] Error closing Redis client: %s", e)

    @staticmethod
    def _to_entry(device_id: str, data: Dict[str, str]) -> Optional[LiveStateEntry]:
        if not data or "last_heartbeat" not in data:
            return None
        reading = data.get("reading")
        return LiveStateEntry(
            device_id=device_id,
            last_heartbeat=float(data["last_heartbeat"]),
            state=Liveness(data.get("state", Liveness.ONLINE.value)),
            reading=orjson.loads(reading) if reading else {},
        )


def create_live_state_cache(settings: Settings) -> LiveStateCache:
    """Builds the configured backend, falling back to memory if Redis is unreachable."""
    if settings.live_state_backend == "redis":
        try:
            cache = RedisLiveStateCache.from_url(settings.redis_url)
            logger.info("[LIVE_STATE] Using Redis backend: %s", settings.redis_url.split("@")[-1])
            return cache
        except Exception as e:
            logger.warning("[LIVE_STATE] Redis unavailable (%s), falling back to memory", e)

    logger.info("[LIVE_STATE] Using in-memory backend")
    return InMemoryLiveStateCache()
