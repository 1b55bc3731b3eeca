# fall_detection/models.py
"""Data types shared by the detection pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from typing import Dict, Optional, Tuple

import numpy as np

Vector3 = Tuple[float, float, float]

# Order used whenever features are flattened into a vector (model input,
# persisted false-alarm history).
FEATURE_NAMES = (
    'max_mag',
    'min_mag',
    'avg_mag',
    'std_dev_mag',
    'max_jerk',
    'orientation_change_deg',
    'dominant_freq_hz',
    'avg_vertical_accel',
    'avg_horizontal_mag',
)


@dataclass(frozen=True)
class Sample:
    """Single motion sample: timestamp in seconds, accel in m/s^2."""
    timestamp: float
    accel: Vector3
    gyro: Optional[Vector3] = None
    mag: Optional[Vector3] = None


@dataclass(frozen=True)
class MotionFeatures:
    """
    Fixed-shape summary of one window.

    max_mag / min_mag / avg_mag / std_dev_mag : accel magnitude statistics
    max_jerk               : largest change between consecutive magnitudes
    orientation_change_deg : angle between first and last accel vector
    dominant_freq_hz       : peak count per second of the magnitude series
    avg_vertical_accel     : mean |z|, z assumed roughly vertical
    avg_horizontal_mag     : mean norm of (x, y)
    """
    max_mag: float
    min_mag: float
    avg_mag: float
    std_dev_mag: float
    max_jerk: float
    orientation_change_deg: float
    dominant_freq_hz: float
    avg_vertical_accel: float
    avg_horizontal_mag: float

    def as_array(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in FEATURE_NAMES], dtype=float)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> 'MotionFeatures':
        return cls(**{name: float(data[name]) for name in FEATURE_NAMES})


@dataclass
class ClassificationResult:
    """
    Output of a classifier for one window.

    is_fall               : final decision after the conjunctive gate
    confidence            : adjusted confidence, always within [0, 1]
    rationale             : human-readable summary for logs
    raw_confidence        : confidence before the false-alarm adjustment
    indicators            : which threshold indicators fired
    similar_to_false_alarm: True if a learned false alarm matched
    """
    is_fall: bool
    confidence: float
    rationale: str
    raw_confidence: float = 0.0
    indicators: Dict[str, bool] = field(default_factory=dict)
    similar_to_false_alarm: bool = False
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        self.confidence = clamp_unit(self.confidence)
        self.raw_confidence = clamp_unit(self.raw_confidence)


@dataclass
class WindowResult:
    """Everything the pipeline produced for one evaluated window."""
    window: Tuple[Sample, ...]
    features: MotionFeatures
    classification: ClassificationResult


def clamp_unit(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))
