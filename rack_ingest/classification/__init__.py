"""Stock event classification.

- models.py: thresholds, snapshot and decision records
- rules.py: ordered predicate → effect rules
- classifier.py: EventClassifier
"""

from .classifier import EventClassifier
from .models import (
    SENSOR_ERROR_STATUS,
    ClassificationDecision,
    ClassificationSnapshot,
    ClassifierAlert,
    ClassifierThresholds,
    EventTag,
    SlotReading,
)
from .rules import DEFAULT_RULES, ClassificationRule

__all__ = [
    "EventClassifier",
    "SENSOR_ERROR_STATUS",
    "ClassificationDecision",
    "ClassificationSnapshot",
    "ClassifierAlert",
    "ClassifierThresholds",
    "EventTag",
    "SlotReading",
    "DEFAULT_RULES",
    "ClassificationRule",
]
