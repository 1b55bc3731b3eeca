# fall_detection/fall_classifier.py

import logging
import pickle
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from .adaptive_suppressor import AdaptiveSuppressor
from .models import FEATURE_NAMES, ClassificationResult, MotionFeatures, clamp_unit

logger = logging.getLogger(__name__)

MODEL_PATH = Path('fall_detection/models/classifier.pkl')

# ── Sensitivity ──────────────────────────────────────────────────────────────
# Level 1 = least sensitive (thresholds x3), level 5 = most sensitive (x0.5)
SENSITIVITY_MULTIPLIERS = {1: 3.0, 2: 2.0, 3: 1.0, 4: 0.7, 5: 0.5}
DEFAULT_SENSITIVITY     = 3

# ── Base thresholds (scaled by the multiplier) ───────────────────────────────
IMPACT_THRESHOLD      = 25.0   # m/s^2, peak magnitude
FREE_FALL_THRESHOLD   = 4.0    # m/s^2, trough magnitude (divided by multiplier)
JERK_THRESHOLD        = 15.0   # m/s^2 between consecutive samples
ORIENTATION_THRESHOLD = 45.0   # degrees (divided by multiplier)
VARIATION_THRESHOLD   = 12.0   # max - min magnitude
STD_DEV_THRESHOLD     = 8.0

# Each indicator adds its weight to the confidence; weights sum to 1.0
INDICATOR_WEIGHTS = {
    'impact':             0.25,
    'free_fall':          0.20,
    'high_jerk':          0.20,
    'orientation_change': 0.15,
    'high_variation':     0.10,
    'abnormal_deviation': 0.10,
}

# ── False-positive penalties ─────────────────────────────────────────────────
VIBRATION_FREQ_HZ   = 15.0   # at or above this the motion looks like vibration
VIBRATION_PENALTY   = 0.3
PLACEMENT_CEILING   = 50.0   # peak this large looks like the device being slammed down
PLACEMENT_PENALTY   = 0.5

FALL_THRESHOLD = 0.7


def sensitivity_multiplier(level: int) -> float:
    """Map a user-facing sensitivity level (1-5) to a threshold multiplier."""
    if level not in SENSITIVITY_MULTIPLIERS:
        logger.warning('Unknown sensitivity level %r, using %d', level, DEFAULT_SENSITIVITY)
        return SENSITIVITY_MULTIPLIERS[DEFAULT_SENSITIVITY]
    return SENSITIVITY_MULTIPLIERS[level]


def scaled_threshold(threshold: float, multiplier: float) -> float:
    """Multiply the odds of a probability threshold by the sensitivity multiplier."""
    if not 0.0 < threshold < 1.0:
        return threshold
    odds = threshold / (1.0 - threshold) * multiplier
    return odds / (1.0 + odds)


class Classifier(ABC):
    """Scores a feature vector into a fall / no-fall decision."""

    name = 'classifier'

    @abstractmethod
    def classify(self, features: MotionFeatures, multiplier: float = 1.0) -> ClassificationResult:
        ...


class RuleBasedClassifier(Classifier):
    """
    Threshold rules over MotionFeatures.

    Six indicators contribute fixed weights to a confidence score, two
    penalties damp vibration-like and placement-like motion, and the
    adaptive suppressor gets the final say. A fall is only declared when
    confidence is high AND impact fired AND (free-fall OR jerk) fired, so a
    single hard knock cannot trigger an alert on its own.
    """

    name = 'rule_based'

    def __init__(self, suppressor: Optional[AdaptiveSuppressor] = None, fall_threshold: float = FALL_THRESHOLD):
        self.suppressor     = suppressor
        self.fall_threshold = fall_threshold

    def classify(self, features: MotionFeatures, multiplier: float = 1.0) -> ClassificationResult:
        indicators = self.indicators(features, multiplier)
        vibration  = features.dominant_freq_hz >= VIBRATION_FREQ_HZ
        placement  = features.max_mag >= PLACEMENT_CEILING * multiplier

        confidence = sum(INDICATOR_WEIGHTS[name] for name, fired in indicators.items() if fired)
        if vibration:
            confidence *= VIBRATION_PENALTY
        if placement:
            confidence *= PLACEMENT_PENALTY
        raw = clamp_unit(confidence)

        adjusted, similar = _apply_suppressor(self.suppressor, features, raw)

        is_fall = (
            adjusted > self.fall_threshold
            and indicators['impact']
            and (indicators['free_fall'] or indicators['high_jerk'])
            and not vibration
            and not placement
            and not similar
        )

        rationale = (
            f'{self.name} - Impact: {features.max_mag:.1f}, FreeFall: {features.min_mag:.1f}, '
            f'Jerk: {features.max_jerk:.1f}, Orient: {features.orientation_change_deg:.1f}deg, '
            f'StdDev: {features.std_dev_mag:.2f}, Freq: {features.dominant_freq_hz:.1f}Hz, '
            f'Conf: {adjusted:.3f}'
        )
        if adjusted != raw:
            rationale += f' (adj from {raw:.3f})'
        if vibration:
            rationale += ' [vibration]'
        if placement:
            rationale += ' [placement]'
        if similar:
            rationale += ' [similar to false alarm]'

        return ClassificationResult(
            is_fall                = is_fall,
            confidence             = adjusted,
            rationale              = rationale,
            raw_confidence         = raw,
            indicators             = indicators,
            similar_to_false_alarm = similar,
        )

    @staticmethod
    def indicators(features: MotionFeatures, multiplier: float) -> Dict[str, bool]:
        return {
            'impact':             features.max_mag > IMPACT_THRESHOLD * multiplier,
            'free_fall':          features.min_mag < FREE_FALL_THRESHOLD / multiplier,
            'high_jerk':          features.max_jerk > JERK_THRESHOLD * multiplier,
            'orientation_change': features.orientation_change_deg > ORIENTATION_THRESHOLD / multiplier,
            'high_variation':     (features.max_mag - features.min_mag) > VARIATION_THRESHOLD * multiplier,
            'abnormal_deviation': features.std_dev_mag > STD_DEV_THRESHOLD * multiplier,
        }


class ModelClassifier(Classifier):
    """
    Learned scorer: a pickled scikit-learn pipeline over the 9-value
    feature vector (FEATURE_NAMES order). The pickle is a dict with a
    'pipeline' entry and an optional 'threshold'.

    The model's fall probability goes through the same adaptive suppressor
    as the rules. If inference fails, the window is scored by the rules
    instead.

    Sensitivity moves the decision threshold in odds space: the odds of the
    saved threshold are multiplied by the sensitivity multiplier, so level 1
    needs a higher probability and level 5 a lower one, while the threshold
    always stays inside (0, 1).

    Raises TypeError if the pickle is not a dict with a 'pipeline', and
    ValueError if the model expects a different number of features.
    """

    name = 'model'

    def __init__(
        self,
        model_path: Path = MODEL_PATH,
        suppressor: Optional[AdaptiveSuppressor] = None,
        pipeline=None,
        threshold: Optional[float] = None,
    ):
        if pipeline is None:
            with open(model_path, 'rb') as f:
                saved = pickle.load(f)
            if not isinstance(saved, dict):
                raise TypeError(f"expected a dict with a 'pipeline' entry, got {type(saved).__name__}")
            pipeline  = saved['pipeline']
            threshold = threshold if threshold is not None else saved.get('threshold', FALL_THRESHOLD)

        n_features = getattr(pipeline, 'n_features_in_', len(FEATURE_NAMES))
        if n_features != len(FEATURE_NAMES):
            raise ValueError(f'model expects {n_features} features, windows provide {len(FEATURE_NAMES)}')

        self.pipeline   = pipeline
        self.threshold  = FALL_THRESHOLD if threshold is None else threshold
        self.suppressor = suppressor
        self._fallback  = RuleBasedClassifier(suppressor=suppressor)

    def classify(self, features: MotionFeatures, multiplier: float = 1.0) -> ClassificationResult:
        try:
            x = np.array([features.as_array()])
            proba = float(self.pipeline.predict_proba(x)[0, 1])
        except Exception:
            logger.error('Model inference failed, scoring with rules', exc_info=True)
            return self._fallback.classify(features, multiplier)

        raw = clamp_unit(proba)
        adjusted, similar = _apply_suppressor(self.suppressor, features, raw)
        threshold = scaled_threshold(self.threshold, multiplier)
        is_fall = adjusted > threshold and not similar

        rationale = (
            f'{self.name} - Fall probability: {raw:.3f}, Conf: {adjusted:.3f}, '
            f'Threshold: {threshold:.3f}'
        )
        if similar:
            rationale += ' [similar to false alarm]'

        return ClassificationResult(
            is_fall                = is_fall,
            confidence             = adjusted,
            rationale              = rationale,
            raw_confidence         = raw,
            similar_to_false_alarm = similar,
        )


def build_classifier(
    model_path: Optional[Path] = None,
    suppressor: Optional[AdaptiveSuppressor] = None,
) -> Classifier:
    """Use the learned model when one loads, otherwise the rule-based scorer."""
    if model_path is not None:
        try:
            classifier = ModelClassifier(model_path=Path(model_path), suppressor=suppressor)
            logger.info('Loaded fall model from %s', model_path)
            return classifier
        except (OSError, pickle.UnpicklingError, KeyError, EOFError, AttributeError, ImportError,
                TypeError, ValueError) as exc:
            logger.warning('Could not load fall model %s (%s), using rule-based detection', model_path, exc)
    return RuleBasedClassifier(suppressor=suppressor)


def _apply_suppressor(suppressor, features, confidence):
    if suppressor is None:
        return confidence, False
    adjusted = clamp_unit(suppressor.adjust(features, confidence))
    return adjusted, suppressor.is_similar(features, adjusted)
