"""Async processor: decouples the paho callback from pipeline work.

The paho network thread only parses and enqueues; worker threads run the
ingestion pipeline (device lookup, classification, DB writes) in
parallel. Messages for different devices run concurrently; ordering is
not preserved.
"""

from __future__ import annotations

from ..workers import BoundedWorkerPool
from .message_handler import MessageHandler
from .validators import RackMessage

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_NUM_WORKERS = 4


class AsyncMessageProcessor(BoundedWorkerPool[RackMessage]):
    """Worker pool in front of MessageHandler.dispatch().

    dispatch() never raises, so a failed message only bumps `errors`.
    """

    log_tag = "ASYNC_PROC"

    def __init__(
        self,
        handler: MessageHandler,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        num_workers: int = DEFAULT_NUM_WORKERS,
    ):
        super().__init__(max_queue_size, num_workers, name="mqtt")
        self._handler = handler

    def enqueue(self, message: RackMessage) -> bool:
        return self.offer(message)

    def _process(self, message: RackMessage) -> bool:
        return self._handler.dispatch(message)

    def _describe(self, message: RackMessage) -> str:
        return f"device={message.device_id}"
