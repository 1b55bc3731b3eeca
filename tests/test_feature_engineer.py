"""
Tests for window -> MotionFeatures extraction.
"""
import pytest

from fall_detection import Sample, extract_features


class TestExtractFeatures:

    def test_empty_window_raises(self):
        with pytest.raises(ValueError):
            extract_features([])

    def test_still_device(self, calm_window):
        features = extract_features(calm_window)

        assert features.max_mag == pytest.approx(9.8)
        assert features.min_mag == pytest.approx(9.8)
        assert features.avg_mag == pytest.approx(9.8)
        assert features.std_dev_mag == pytest.approx(0.0, abs=1e-9)
        assert features.max_jerk == pytest.approx(0.0, abs=1e-9)
        assert features.orientation_change_deg == pytest.approx(0.0, abs=1e-6)
        assert features.dominant_freq_hz == 0.0
        assert features.avg_vertical_accel == pytest.approx(9.8)
        assert features.avg_horizontal_mag == pytest.approx(0.0)

    def test_fall_window(self, fall_window):
        features = extract_features(fall_window)

        assert features.max_mag == pytest.approx(28.0)
        assert features.min_mag == pytest.approx(2.0)
        # 44 x 9.8, 5 x 2.0, 1 x 28.0
        assert features.avg_mag == pytest.approx(9.384)
        assert features.std_dev_mag == pytest.approx(3.5406, abs=1e-3)
        assert features.avg_vertical_accel == pytest.approx(9.384)
        assert features.avg_horizontal_mag == pytest.approx(0.0)
        assert features.orientation_change_deg == pytest.approx(0.0, abs=1e-6)
        assert features.max_jerk == pytest.approx(26.0)
        # one strict peak over 49 * 20 ms
        assert features.dominant_freq_hz == pytest.approx(1 / 0.98)

    def test_orientation_change(self):
        window = [
            Sample(timestamp=0.0, accel=(0.0, 0.0, 9.8)),
            Sample(timestamp=0.02, accel=(5.0, 0.0, 5.0)),
            Sample(timestamp=0.04, accel=(9.8, 0.0, 0.0)),
        ]
        assert extract_features(window).orientation_change_deg == pytest.approx(90.0)

    def test_orientation_ignores_zero_vector(self):
        window = [
            Sample(timestamp=0.0, accel=(0.0, 0.0, 0.0)),
            Sample(timestamp=0.02, accel=(9.8, 0.0, 0.0)),
        ]
        assert extract_features(window).orientation_change_deg == 0.0

    def test_horizontal_and_vertical_split(self):
        window = [Sample(timestamp=i * 0.02, accel=(3.0, 4.0, -2.0)) for i in range(10)]
        features = extract_features(window)
        assert features.avg_horizontal_mag == pytest.approx(5.0)
        assert features.avg_vertical_accel == pytest.approx(2.0)

    def test_frequency_needs_four_samples(self):
        window = [Sample(timestamp=i * 0.02, accel=(0.0, 0.0, z)) for i, z in enumerate([1.0, 5.0, 1.0])]
        assert extract_features(window).dominant_freq_hz == 0.0

    def test_frequency_falls_back_to_sample_rate(self):
        # identical timestamps: duration comes from len / sample_rate
        z_values = [1.0, 2.0, 1.0, 2.0, 1.0, 2.0, 1.0, 1.0]
        window = [Sample(timestamp=5.0, accel=(0.0, 0.0, z)) for z in z_values]
        features = extract_features(window, sample_rate_hz=50.0)
        assert features.dominant_freq_hz == pytest.approx(3 / (8 / 50.0))

    def test_single_sample(self):
        features = extract_features([Sample(timestamp=0.0, accel=(0.0, 0.0, 9.8))])
        assert features.max_jerk == 0.0
        assert features.std_dev_mag == 0.0
        assert features.orientation_change_deg == 0.0

    def test_feature_vector_order(self, fall_window):
        features = extract_features(fall_window)
        vector = features.as_array()
        assert vector.shape == (9,)
        assert vector[0] == pytest.approx(features.max_mag)
        assert vector[4] == pytest.approx(features.max_jerk)
