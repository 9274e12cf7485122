"""Pipeline counters, exposed on /metrics."""

from __future__ import annotations

import threading
from collections import Counter


class PipelineStats:
    def __init__(self) -> None:
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def incr(self, name: str, n: int = 1) -> None:
        with self._lock:
            self._counts[name] += n

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def __str__(self) -> str:
        with self._lock:
            body = " ".join(f"{k}={v}" for k, v in sorted(self._counts.items()))
        return f"Stats: {body}"

    def to_dict(self) -> dict:
        with self._lock:
            return dict(self._counts)
