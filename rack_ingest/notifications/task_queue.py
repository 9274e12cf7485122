"""Background task queue for fire-and-forget side effects.

Webhook POSTs and audit writes are submitted here so their latency never
adds to ingestion latency. A full queue drops the task with a warning.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

from ..workers import BoundedWorkerPool

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 500
DEFAULT_NUM_WORKERS = 2

_Task = Tuple[str, Callable[..., Any], tuple, dict]


class BackgroundTaskQueue(BoundedWorkerPool[_Task]):
    log_tag = "TASKS"

    def __init__(
        self,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        num_workers: int = DEFAULT_NUM_WORKERS,
        name: str = "notify",
    ):
        super().__init__(max_queue_size, num_workers, name=name)

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
        """Schedule fn(*args, **kwargs). Returns False if the queue is full."""
        return self.offer((label, fn, args, kwargs))

    def _process(self, task: _Task) -> bool:
        _, fn, args, kwargs = task
        fn(*args, **kwargs)
        return True

    def _describe(self, task: _Task) -> str:
        return f"task={task[0]}"


def run_in_background(
    tasks: Optional[BackgroundTaskQueue],
    label: str,
    fn: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Submit to the queue, or run inline when no queue is configured."""
    if tasks is not None:
        tasks.submit(label, fn, *args, **kwargs)
        return
    try:
        fn(*args, **kwargs)
    except Exception as e:
        logger.error("[TASKS] Inline task=%s error: %s", label, e)
