"""Bounded queue + worker threads, shared by the MQTT processor and the
background task queue.

- offer() never blocks; a full queue drops the item
- workers call _process(item), one failure never stops the loop
- stop(drain=True) runs what is already queued before joining
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedWorkerPool(Generic[T]):
    """Subclasses implement _process(item) -> bool (True when the item succeeded)."""

    log_tag = "WORKERS"

    def __init__(self, max_queue_size: int, num_workers: int, name: str):
        self._queue: "queue.Queue[T]" = queue.Queue(maxsize=max_queue_size)
        self._num_workers = num_workers
        self._name = name
        self._stop_event = threading.Event()

        # Metrics
        self._enqueued = 0
        self._dropped = 0
        self._processed = 0
        self._errors = 0
        self._lock = threading.Lock()

        self._workers: list[threading.Thread] = []

    def start(self) -> None:
        self._stop_event.clear()
        for i in range(self._num_workers):
            t = threading.Thread(
                target=self._worker_loop,
                args=(i,),
                daemon=True,
                name=f"{self._name}-worker-{i}",
            )
            t.start()
            self._workers.append(t)
        logger.info(
            "[%s] %s started workers=%d queue_max=%d",
            self.log_tag, self._name, self._num_workers, self._queue.maxsize,
        )

    def stop(self, drain: bool = True) -> None:
        """Stop workers. If drain=True, process remaining items first."""
        if drain and self._workers:
            self._queue.join()
        self._stop_event.set()
        for t in self._workers:
            t.join(timeout=5.0)
        self._workers.clear()
        logger.info("[%s] %s stopped. %s", self.log_tag, self._name, self.metrics)

    def offer(self, item: T) -> bool:
        """Returns False if the queue is full and the item was dropped."""
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.warning("[%s] %s queue full, dropped %s", self.log_tag, self._name, self._describe(item))
            return False
        with self._lock:
            self._enqueued += 1
        return True

    def join(self) -> None:
        """Block until every queued item has been processed."""
        self._queue.join()

    def _process(self, item: T) -> bool:
        raise NotImplementedError

    def _describe(self, item: T) -> Any:
        return item

    def _worker_loop(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue

            try:
                try:
                    ok = self._process(item)
                except Exception as e:
                    ok = False
                    logger.error(
                        "[%s] %s worker %d error on %s: %s",
                        self.log_tag, self._name, worker_id, self._describe(item), e,
                    )
                # Counted before task_done so join() sees the final metrics.
                with self._lock:
                    if ok:
                        self._processed += 1
                    else:
                        self._errors += 1
            finally:
                self._queue.task_done()

    @property
    def metrics(self) -> dict:
        with self._lock:
            return {
                "queue_depth": self._queue.qsize(),
                "queue_max": self._queue.maxsize,
                "enqueued": self._enqueued,
                "dropped": self._dropped,
                "processed": self._processed,
                "errors": self._errors,
            }
