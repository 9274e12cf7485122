"""Data models for stock event classification.

Frozen dataclasses: the classifier works on an immutable snapshot of
(previous log entry, current reading) and returns one decision record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from rack_common.config import Settings


class EventTag(str, Enum):
    """Tag stored on a log entry for meaningful stock movements."""

    RESTOCK = "RESTOCK"
    BATCH_USAGE = "BATCH_USAGE"


class ClassifierAlert(str, Enum):
    """Alert types the classifier can produce."""

    SENSOR_ERROR = "SENSOR_ERROR"
    RESTOCK = "RESTOCK"
    BATCH_USAGE = "BATCH_USAGE"


SENSOR_ERROR_STATUS = "SENSOR_ERROR"


@dataclass(frozen=True)
class ClassifierThresholds:
    sensor_error_delta_abs: float = 10000.0
    max_plausible_weight: float = 20000.0
    restock_delta_min: float = 100.0
    batch_usage_delta_min: float = 1000.0
    significant_change_delta: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassifierThresholds":
        return cls(
            sensor_error_delta_abs=settings.sensor_error_delta_abs,
            max_plausible_weight=settings.max_plausible_weight,
            restock_delta_min=settings.restock_delta_min,
            batch_usage_delta_min=settings.batch_usage_delta_min,
            significant_change_delta=settings.significant_change_delta,
        )


@dataclass(frozen=True)
class SlotReading:
    """One reading from a device slot, as seen by the classifier."""

    slot_id: str
    ingredient: Optional[str]
    weight: Optional[float]
    status: Optional[str]


@dataclass(frozen=True)
class ClassificationSnapshot:
    """Immutable (previous, current) pair the rules are evaluated against."""

    previous: Optional[SlotReading]
    current: SlotReading
    thresholds: ClassifierThresholds

    @property
    def has_previous(self) -> bool:
        return self.previous is not None

    @property
    def weight(self) -> Optional[float]:
        return self.current.weight

    @property
    def previous_weight(self) -> Optional[float]:
        return self.previous.weight if self.previous is not None else None

    @property
    def delta(self) -> float:
        """Signed current − previous weight; 0 when either side has no weight."""
        if self.weight is None or self.previous_weight is None:
            return 0.0
        return self.weight - self.previous_weight

    @property
    def descriptor_changed(self) -> bool:
        """True when status, ingredient or slot differ from the previous entry."""
        if self.previous is None:
            return False
        return (
            self.previous.status != self.current.status
            or self.previous.ingredient != self.current.ingredient
            or self.previous.slot_id != self.current.slot_id
        )


@dataclass(frozen=True)
class ClassificationDecision:
    should_log: bool
    logged_status: Optional[str]
    event_tag: Optional[EventTag] = None
    alert_type: Optional[ClassifierAlert] = None
    alert_details: Dict[str, Any] = field(default_factory=dict)
    matched_rules: Tuple[str, ...] = ()

    @property
    def suppressed_alert(self) -> bool:
        """An alert was produced for a reading that will not be persisted."""
        return self.alert_type is not None and not self.should_log
