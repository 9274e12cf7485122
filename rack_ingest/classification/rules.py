"""Ordered classification rules.

Each rule is a pure predicate → effect pair over a ClassificationSnapshot.
Rules are evaluated in list order; a later matching rule overrides the
fields an earlier one set. Effects only return field updates, the
classifier folds them into the decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from .models import (
    SENSOR_ERROR_STATUS,
    ClassificationSnapshot,
    ClassifierAlert,
    EventTag,
)

Effect = Dict[str, Any]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Callable[[ClassificationSnapshot], bool]
    effect: Callable[[ClassificationSnapshot], Effect]

    def apply(self, snapshot: ClassificationSnapshot) -> Effect | None:
        if not self.predicate(snapshot):
            return None
        return self.effect(snapshot)


def _details(s: ClassificationSnapshot, reason: str) -> Dict[str, Any]:
    return {
        "reason": reason,
        "weight": s.weight,
        "previousWeight": s.previous_weight,
        "delta": s.delta,
    }


def _has_weights(s: ClassificationSnapshot) -> bool:
    return s.weight is not None and s.previous_weight is not None


def _sensor_error(s: ClassificationSnapshot, reason: str) -> Effect:
    return {
        "should_log": True,
        "logged_status": SENSOR_ERROR_STATUS,
        "alert_type": ClassifierAlert.SENSOR_ERROR,
        "alert_details": _details(s, reason),
    }


def _first_reading(s: ClassificationSnapshot) -> bool:
    return not s.has_previous


def _significant_change(s: ClassificationSnapshot) -> bool:
    if not s.has_previous:
        return False
    return abs(s.delta) > s.thresholds.significant_change_delta or s.descriptor_changed


def _impossible_jump(s: ClassificationSnapshot) -> bool:
    return _has_weights(s) and abs(s.delta) > s.thresholds.sensor_error_delta_abs


def _implausible_weight(s: ClassificationSnapshot) -> bool:
    w = s.weight
    return w is not None and (w < 0 or w > s.thresholds.max_plausible_weight)


def _restock(s: ClassificationSnapshot) -> bool:
    return _has_weights(s) and s.delta > s.thresholds.restock_delta_min


def _batch_usage(s: ClassificationSnapshot) -> bool:
    return _has_weights(s) and -s.delta > s.thresholds.batch_usage_delta_min


def _negative_weight(s: ClassificationSnapshot) -> bool:
    return s.weight is not None and s.weight < 0


DEFAULT_RULES: List[ClassificationRule] = [
    ClassificationRule(
        name="first_reading",
        predicate=_first_reading,
        effect=lambda s: {"should_log": True},
    ),
    ClassificationRule(
        name="significant_change",
        predicate=_significant_change,
        effect=lambda s: {"should_log": True},
    ),
    ClassificationRule(
        name="impossible_jump",
        predicate=_impossible_jump,
        effect=lambda s: _sensor_error(
            s, f"|delta| {abs(s.delta):.1f} > {s.thresholds.sensor_error_delta_abs:.1f}"
        ),
    ),
    ClassificationRule(
        name="implausible_weight",
        predicate=_implausible_weight,
        effect=lambda s: _sensor_error(
            s, f"weight {s.weight:.1f} outside [0, {s.thresholds.max_plausible_weight:.1f}]"
        ),
    ),
    ClassificationRule(
        name="restock",
        predicate=_restock,
        effect=lambda s: {
            "should_log": True,
            "event_tag": EventTag.RESTOCK,
            "alert_type": ClassifierAlert.RESTOCK,
            "alert_details": _details(s, f"weight increased by {s.delta:.1f}"),
        },
    ),
    ClassificationRule(
        name="batch_usage",
        predicate=_batch_usage,
        effect=lambda s: {
            "should_log": True,
            "event_tag": EventTag.BATCH_USAGE,
            "alert_type": ClassifierAlert.BATCH_USAGE,
            "alert_details": _details(s, f"weight decreased by {-s.delta:.1f}"),
        },
    ),
    # Negative readings are never persisted, even when a rule above raised
    # SENSOR_ERROR for them: the alert still fires.
    ClassificationRule(
        name="negative_weight",
        predicate=_negative_weight,
        effect=lambda s: {"should_log": False},
    ),
]
