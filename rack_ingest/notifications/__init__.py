"""Notification fan-out.

- broadcaster.py: real-time channels and subscribers
- webhook.py: single-attempt webhook POST
- task_queue.py: bounded background queue for webhook/audit work
- service.py: NotificationService tying them together
"""

from .broadcaster import (
    ALERT,
    CHANNELS,
    COMMAND_RESPONSE,
    DEVICE_STATUS,
    NFC_EVENT,
    UPDATE,
    AsyncioQueueSubscriber,
    QueueSubscriber,
    RealtimeBroadcaster,
    Subscriber,
)
from .service import NotificationService
from .task_queue import BackgroundTaskQueue, run_in_background
from .webhook import WebhookDispatcher

__all__ = [
    "ALERT",
    "CHANNELS",
    "COMMAND_RESPONSE",
    "DEVICE_STATUS",
    "NFC_EVENT",
    "UPDATE",
    "AsyncioQueueSubscriber",
    "QueueSubscriber",
    "RealtimeBroadcaster",
    "Subscriber",
    "NotificationService",
    "BackgroundTaskQueue",
    "run_in_background",
    "WebhookDispatcher",
]
