# fall_detection/feature_engineer.py

from typing import Sequence

import numpy as np

from .models import MotionFeatures, Sample

SAMPLE_RATE_HZ = 50.0   # nominal sensor rate, used when timestamps are unusable


def extract_features(window: Sequence[Sample], sample_rate_hz: float = SAMPLE_RATE_HZ) -> MotionFeatures:
    """
    Summarise one window of samples into a MotionFeatures vector.

    Pure function: nothing is carried over between windows.
    Raises ValueError on an empty window.
    """
    if not window:
        raise ValueError('cannot extract features from an empty window')

    accel = np.asarray([s.accel for s in window], dtype=float)   # [n, 3]
    magnitudes = np.linalg.norm(accel, axis=1)

    # ---- Jerk: biggest jump between consecutive magnitudes ----
    max_jerk = float(np.max(np.abs(np.diff(magnitudes)))) if len(magnitudes) >= 2 else 0.0

    # ---- Vertical / horizontal split, z-axis treated as vertical ----
    avg_vertical   = float(np.mean(np.abs(accel[:, 2])))
    avg_horizontal = float(np.mean(np.linalg.norm(accel[:, :2], axis=1)))

    return MotionFeatures(
        max_mag                = float(magnitudes.max()),
        min_mag                = float(magnitudes.min()),
        avg_mag                = float(magnitudes.mean()),
        std_dev_mag            = float(magnitudes.std()),
        max_jerk               = max_jerk,
        orientation_change_deg = _orientation_change(accel),
        dominant_freq_hz       = _dominant_frequency(magnitudes, window, sample_rate_hz),
        avg_vertical_accel     = avg_vertical,
        avg_horizontal_mag     = avg_horizontal,
    )


def _orientation_change(accel: np.ndarray) -> float:
    """Angle in degrees between the first and last accel vectors."""
    if len(accel) < 2:
        return 0.0
    first, last = accel[0], accel[-1]
    norm_first = np.linalg.norm(first)
    norm_last  = np.linalg.norm(last)
    if norm_first == 0 or norm_last == 0:
        return 0.0
    cos_angle = np.clip(np.dot(first, last) / (norm_first * norm_last), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def _dominant_frequency(magnitudes: np.ndarray, window: Sequence[Sample], sample_rate_hz: float) -> float:
    """
    Peak-count proxy for the dominant frequency: strict local maxima
    divided by the window duration in seconds.
    """
    if len(magnitudes) < 4:
        return 0.0

    inner = magnitudes[1:-1]
    peaks = int(np.count_nonzero((inner > magnitudes[:-2]) & (inner > magnitudes[2:])))

    duration = window[-1].timestamp - window[0].timestamp
    if duration <= 0:
        # duplicated or out-of-order timestamps; fall back to the nominal rate
        duration = len(magnitudes) / sample_rate_hz
    return peaks / duration
