"""
Tests for the replay helpers in run_monitor.py.
"""
from fall_detection import DetectionPipeline
from run_monitor import read_samples, synthetic_fall


def test_synthetic_fall_is_detected():
    falls = []
    pipeline = DetectionPipeline(on_fall=falls.append)
    for sample in synthetic_fall():
        pipeline.add_sample(sample)
        pipeline.evaluate()
    assert falls
    assert falls[0].classification.indicators["impact"] is True


def test_read_samples(tmp_path):
    path = tmp_path / "recording.csv"
    path.write_text(
        "timestamp,ax,ay,az,gx,gy,gz\n"
        "0.00,0.1,0.2,9.8,0,0,0\n"
        "0.02,0.1,0.2,9.7,,,\n"
    )
    samples = list(read_samples(path))
    assert [s.timestamp for s in samples] == [0.0, 0.02]
    assert samples[0].accel == (0.1, 0.2, 9.8)
    assert samples[0].gyro == (0.0, 0.0, 0.0)
    assert samples[1].gyro is None
