from .deduplicator import AlertDeduplicator
from .models import DEVICE_ALERTS, AlertSubject, AlertType, stock_alert_for_status

__all__ = [
    "AlertDeduplicator",
    "AlertSubject",
    "AlertType",
    "DEVICE_ALERTS",
    "stock_alert_for_status",
]
