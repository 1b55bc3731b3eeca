# fall_detection/pipeline.py

import logging
import threading
from typing import Callable, List, Optional

from .adaptive_suppressor import AdaptiveSuppressor
from .fall_classifier import Classifier, RuleBasedClassifier, sensitivity_multiplier
from .feature_engineer import SAMPLE_RATE_HZ, extract_features
from .models import MotionFeatures, Sample, WindowResult
from .window_buffer import OVERLAP_SIZE, WINDOW_SIZE, WindowBuffer

logger = logging.getLogger(__name__)

EVALUATION_INTERVAL = 0.1   # seconds between window checks, independent of sample rate


class DetectionPipeline:
    """
    Motion-sample fall detection pipeline.

    Samples arrive on the sensor path via add_sample(), which only appends
    to the window buffer. A separate evaluation tick (evaluate(), driven by
    a background thread after start()) drains full windows through:
      • FeatureEngineer — extract_features()
      • Classifier      — rule-based or learned, with the adaptive suppressor

    Only the final fall signal leaves the pipeline, through `on_fall`.

    Usage
    -----
    pipeline = DetectionPipeline(on_fall=lambda r: print(r.classification))
    pipeline.start()
    for sample in sensor:
        pipeline.add_sample(sample)
    pipeline.stop()
    """

    def __init__(
        self,
        classifier: Optional[Classifier] = None,
        suppressor: Optional[AdaptiveSuppressor] = None,
        sensitivity_level: int = 3,
        window_size: int = WINDOW_SIZE,
        overlap: int = OVERLAP_SIZE,
        sample_rate_hz: float = SAMPLE_RATE_HZ,
        evaluation_interval: float = EVALUATION_INTERVAL,
        on_window_ready: Optional[Callable[[MotionFeatures], None]] = None,
        on_fall: Optional[Callable[[WindowResult], None]] = None,
    ):
        self.suppressor  = suppressor
        self._classifier = classifier or RuleBasedClassifier(suppressor=suppressor)
        self._buffer     = WindowBuffer(capacity=window_size, overlap=overlap)
        self._multiplier = sensitivity_multiplier(sensitivity_level)

        self.sample_rate_hz      = sample_rate_hz
        self.evaluation_interval = evaluation_interval
        self.on_window_ready     = on_window_ready
        self.on_fall             = on_fall

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── Sensor path ───────────────────────────────────────────────────────────

    def add_sample(self, sample: Sample) -> None:
        """Non-blocking: buffer the sample for the next evaluation tick."""
        self._buffer.append(sample)

    # ── Evaluation tick ───────────────────────────────────────────────────────

    def evaluate(self) -> Optional[WindowResult]:
        """
        Classify the next full window, if there is one.
        Returns None while the buffer is still filling.
        """
        window = self._buffer.drain_window()
        if window is None:
            return None

        features = extract_features(window, self.sample_rate_hz)
        classification = self._classifier.classify(features, self._multiplier)
        result = WindowResult(window=window, features=features, classification=classification)

        logger.debug('Window evaluated | %s', classification.rationale)
        _notify(self.on_window_ready, features)

        if classification.is_fall:
            logger.warning(
                'Fall detected | confidence=%.3f | %s',
                classification.confidence,
                classification.rationale,
            )
            _notify(self.on_fall, result)

        return result

    def evaluate_pending(self) -> List[WindowResult]:
        """Classify every window cut since the last tick, oldest first."""
        results = []
        while True:
            result = self.evaluate()
            if result is None:
                return results
            results.append(result)

    def set_sensitivity(self, level: int) -> None:
        self._multiplier = sensitivity_multiplier(level)
        logger.info('Sensitivity set to level %s (multiplier %.1f)', level, self._multiplier)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning('Detection pipeline already running')
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='fall-detection', daemon=True)
        self._thread.start()
        logger.info('Detection pipeline started (every %.2fs)', self.evaluation_interval)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.reset()
        logger.info('Detection pipeline stopped')

    def reset(self) -> None:
        """Drop buffered samples."""
        self._buffer.clear()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    @property
    def buffered_samples(self) -> int:
        return len(self._buffer)

    def _run(self) -> None:
        while not self._stop_event.wait(self.evaluation_interval):
            try:
                self.evaluate_pending()
            except Exception:
                logger.error('Window evaluation failed', exc_info=True)


def _notify(callback, *args) -> None:
    """Invoke an observer callback; observers must not break detection."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.error('Observer callback %r failed', callback, exc_info=True)
