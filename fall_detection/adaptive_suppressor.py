# fall_detection/adaptive_suppressor.py
"""
Learns from user-cancelled alerts.

Every time the user cancels a countdown, the features and confidence of
the triggering window are stored as a FalseAlarmPattern. Later windows are
compared against that history with a weighted nearest-neighbour score:

  • adjust()     — dampens confidence when a window resembles a past false alarm
  • is_similar() — vetoes a fall outright when the resemblance is strong

The history is in memory unless `history_path` is given, in which case it is
written to a JSON file after every change and reloaded on start-up.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, List, Optional

from .models import MotionFeatures, clamp_unit

logger = logging.getLogger(__name__)

# ── Learning parameters ──────────────────────────────────────────────────────
MAX_PATTERN_HISTORY  = 100
SIMILARITY_THRESHOLD = 0.85   # above this a window counts as a known false alarm
ADJUST_THRESHOLD     = 0.50   # above this confidence gets dampened
LEARNING_RATE        = 0.1
RECENT_SECONDS       = 7 * 24 * 60 * 60

# (feature name, normaliser, weight). Differences are divided by the
# normaliser so each term lands roughly in [0, 1].
_SIMILARITY_TERMS = (
    ('max_mag',                50.0,  0.20),
    ('min_mag',                20.0,  0.15),
    ('avg_mag',                30.0,  0.15),
    ('std_dev_mag',            15.0,  0.15),
    ('max_jerk',               25.0,  0.15),
    ('orientation_change_deg', 180.0, 0.10),
    ('dominant_freq_hz',       30.0,  0.05),
)
_CONFIDENCE_WEIGHT = 0.05


@dataclass(frozen=True)
class FalseAlarmPattern:
    features: MotionFeatures
    confidence: float
    timestamp: float


@dataclass(frozen=True)
class LearningStats:
    total_patterns: int
    recent_patterns: int


class AdaptiveSuppressor:
    """Bounded FIFO history of false alarms plus the similarity heuristic."""

    def __init__(
        self,
        capacity: int = MAX_PATTERN_HISTORY,
        learning_rate: float = LEARNING_RATE,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        history_path: Optional[Path] = None,
    ):
        self.learning_rate        = learning_rate
        self.similarity_threshold = similarity_threshold
        self.history_path         = Path(history_path) if history_path else None

        self._lock = threading.Lock()
        self._patterns: Deque[FalseAlarmPattern] = deque(maxlen=capacity)

        if self.history_path is not None:
            self._load()

    # ── Public API ────────────────────────────────────────────────────────────

    def learn(self, features: MotionFeatures, confidence: float) -> None:
        """Remember a cancelled alert. The oldest pattern is evicted at capacity."""
        pattern = FalseAlarmPattern(features, clamp_unit(confidence), time.time())
        with self._lock:
            self._patterns.append(pattern)
            total = len(self._patterns)
            self._save()
        logger.info('False alarm learned | confidence=%.3f | patterns=%d', confidence, total)

    def is_similar(self, features: MotionFeatures, confidence: float) -> bool:
        for pattern in self._snapshot():
            similarity = self.similarity(features, confidence, pattern)
            if similarity > self.similarity_threshold:
                logger.debug('Similar to false alarm pattern (%.2f similarity)', similarity)
                return True
        return False

    def adjust(self, features: MotionFeatures, confidence: float) -> float:
        """Reduce confidence by confidence * max_similarity * learning_rate when it resembles history."""
        patterns = self._snapshot()
        if not patterns:
            return confidence

        max_similarity = max(self.similarity(features, confidence, p) for p in patterns)
        if max_similarity <= ADJUST_THRESHOLD:
            return confidence

        adjusted = confidence - confidence * max_similarity * self.learning_rate
        logger.debug(
            'Confidence adjusted: %.3f -> %.3f (similarity: %.2f)',
            confidence, adjusted, max_similarity,
        )
        return clamp_unit(adjusted)

    @staticmethod
    def similarity(features: MotionFeatures, confidence: float, pattern: FalseAlarmPattern) -> float:
        distance = sum(
            abs(getattr(features, name) - getattr(pattern.features, name)) / scale * weight
            for name, scale, weight in _SIMILARITY_TERMS
        )
        distance += abs(confidence - pattern.confidence) * _CONFIDENCE_WEIGHT
        return clamp_unit(1.0 - distance)

    def stats(self) -> LearningStats:
        cutoff = time.time() - RECENT_SECONDS
        patterns = self._snapshot()
        return LearningStats(
            total_patterns  = len(patterns),
            recent_patterns = sum(1 for p in patterns if p.timestamp > cutoff),
        )

    def reset(self) -> None:
        with self._lock:
            self._patterns.clear()
            self._save()
        logger.info('Learned false alarm patterns reset')

    @property
    def patterns(self) -> List[FalseAlarmPattern]:
        return self._snapshot()

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)

    # ── Persistence ───────────────────────────────────────────────────────────

    def _snapshot(self) -> List[FalseAlarmPattern]:
        with self._lock:
            return list(self._patterns)

    def _save(self) -> None:
        # caller holds the lock
        if self.history_path is None:
            return
        data = [
            {
                'features':   p.features.as_dict(),
                'confidence': p.confidence,
                'timestamp':  p.timestamp,
            }
            for p in self._patterns
        ]
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except OSError as exc:
            logger.error('Could not save false alarm history to %s: %s', self.history_path, exc)

    def _load(self) -> None:
        if not self.history_path.exists():
            return
        try:
            with open(self.history_path, encoding='utf-8') as f:
                data = json.load(f)
            patterns = [
                FalseAlarmPattern(
                    features   = MotionFeatures.from_dict(item['features']),
                    confidence = float(item['confidence']),
                    timestamp  = float(item['timestamp']),
                )
                for item in data
            ]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning('Ignoring unreadable false alarm history %s: %s', self.history_path, exc)
            return

        self._patterns.extend(patterns)
        logger.info('Loaded %d false alarm patterns from %s', len(self._patterns), self.history_path)
