# fall_detection/__init__.py
"""
fall_detection
==============
Motion-sensor fall detection package.

Public API
----------
DetectionPipeline   — main entry point; feed it samples, get fall signals back
WindowResult        — dataclass produced for every evaluated window

Individual components (use directly only if you need fine-grained control):
WindowBuffer        — overlapping sliding window of samples
extract_features    — window -> MotionFeatures
RuleBasedClassifier — threshold rules with sensitivity scaling
ModelClassifier     — pickled scikit-learn pipeline over the feature vector
AdaptiveSuppressor  — learns from cancelled alerts
EventLogger         — fall / false-positive counters and session history

Typical usage
-------------
    from fall_detection import DetectionPipeline, AdaptiveSuppressor, Sample

    suppressor = AdaptiveSuppressor()
    pipeline = DetectionPipeline(
        suppressor=suppressor,
        on_fall=lambda r: print(f'FALL  conf={r.classification.confidence:.2f}'),
    )
    pipeline.start()

    for t, x, y, z in sensor_stream():
        pipeline.add_sample(Sample(timestamp=t, accel=(x, y, z)))

    pipeline.stop()
"""

from .models              import Sample, MotionFeatures, ClassificationResult, WindowResult, FEATURE_NAMES
from .window_buffer       import WindowBuffer
from .feature_engineer    import extract_features
from .fall_classifier     import (
    Classifier,
    RuleBasedClassifier,
    ModelClassifier,
    build_classifier,
    sensitivity_multiplier,
)
from .adaptive_suppressor import AdaptiveSuppressor, FalseAlarmPattern, LearningStats
from .pipeline            import DetectionPipeline
from .event_logger        import EventLogger, SessionRecord

__all__ = [
    'DetectionPipeline',
    'WindowResult',
    'Sample',
    'MotionFeatures',
    'ClassificationResult',
    'FEATURE_NAMES',
    'WindowBuffer',
    'extract_features',
    'Classifier',
    'RuleBasedClassifier',
    'ModelClassifier',
    'build_classifier',
    'sensitivity_multiplier',
    'AdaptiveSuppressor',
    'FalseAlarmPattern',
    'LearningStats',
    'EventLogger',
    'SessionRecord',
]

__version__ = '0.2.0'
