"""Stock event classifier.

Decides whether a slot reading is significant enough to append to the
ingredient log, and which stock/sensor alert it implies:

1. first_reading       no previous entry → log
2. significant_change  |Δ| > significant delta, or status/ingredient/slot changed → log
3. impossible_jump     |Δ| > sensor error delta → SENSOR_ERROR
4. implausible_weight  weight < 0 or > max plausible → SENSOR_ERROR
5. restock             Δ > restock minimum → RESTOCK
6. batch_usage         −Δ > batch usage minimum → BATCH_USAGE
7. negative_weight     weight < 0 → do not log (alert from 3/4 is kept)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from .models import (
    ClassificationDecision,
    ClassificationSnapshot,
    ClassifierThresholds,
    SlotReading,
)
from .rules import DEFAULT_RULES, ClassificationRule

logger = logging.getLogger(__name__)


class EventClassifier:
    """Pure decision function over (previous log, current reading, thresholds)."""

    def __init__(
        self,
        thresholds: Optional[ClassifierThresholds] = None,
        rules: Optional[Sequence[ClassificationRule]] = None,
    ) -> None:
        self._thresholds = thresholds or ClassifierThresholds()
        self._rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    @property
    def thresholds(self) -> ClassifierThresholds:
        return self._thresholds

    def classify(
        self,
        previous: Optional[SlotReading],
        current: SlotReading,
    ) -> ClassificationDecision:
        snapshot = ClassificationSnapshot(
            previous=previous,
            current=current,
            thresholds=self._thresholds,
        )

        fields: Dict[str, Any] = {
            "should_log": False,
            "logged_status": current.status,
            "event_tag": None,
            "alert_type": None,
            "alert_details": {},
        }
        matched = []

        for rule in self._rules:
            effect = rule.apply(snapshot)
            if effect is None:
                continue
            matched.append(rule.name)
            fields.update(effect)

        decision = ClassificationDecision(matched_rules=tuple(matched), **fields)

        if decision.suppressed_alert:
            logger.debug(
                "[CLASSIFIER] slot=%s alert=%s for unpersisted reading weight=%s",
                current.slot_id,
                decision.alert_type.value,
                current.weight,
            )
        return decision
