"""
Shared pytest fixtures for the fall monitor tests.
"""
import threading
import time

import numpy as np
import pytest

from fall_detection import MotionFeatures, Sample
from response import AlertConfig, DeliveryError, EmergencyContact, Location

GRAVITY = 9.8
SAMPLE_PERIOD = 0.02   # 50 Hz


# ---------------------------------------------------------------------------
# Motion data
# ---------------------------------------------------------------------------

def _window(z_values, start=0.0):
    return [
        Sample(timestamp=start + i * SAMPLE_PERIOD, accel=(0.0, 0.0, z))
        for i, z in enumerate(z_values)
    ]


@pytest.fixture
def calm_window():
    """50 samples of a device lying still."""
    return _window([GRAVITY] * 50)


@pytest.fixture
def fall_window():
    """
    Standing, a short free-fall, one hard impact, standing again.
    Magnitudes: 20 x 9.8, 5 x 2.0, 1 x 28.0, 24 x 9.8.
    """
    return _window([GRAVITY] * 20 + [2.0] * 5 + [28.0] + [GRAVITY] * 24)


@pytest.fixture
def make_features():
    """Factory for MotionFeatures; defaults describe a still device."""
    def _make(**overrides):
        values = dict(
            max_mag=GRAVITY,
            min_mag=GRAVITY,
            avg_mag=GRAVITY,
            std_dev_mag=0.0,
            max_jerk=0.0,
            orientation_change_deg=0.0,
            dominant_freq_hz=0.0,
            avg_vertical_accel=GRAVITY,
            avg_horizontal_mag=0.0,
        )
        values.update(overrides)
        return MotionFeatures(**values)
    return _make


@pytest.fixture
def fall_features(make_features):
    """Impact, free-fall, jerk and variation fire: confidence 0.75."""
    return make_features(
        max_mag=28.0,
        min_mag=2.0,
        std_dev_mag=4.0,
        max_jerk=20.0,
        orientation_change_deg=10.0,
        dominant_freq_hz=2.0,
    )


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeChannel:
    """Records every send; addresses in `failing` raise DeliveryError."""

    def __init__(self, name, failing=(), error=None):
        self.name    = name
        self.failing = set(failing)
        self.error   = error
        self.sent    = []

    def send(self, address, text):
        if self.error is not None:
            raise self.error
        if address in self.failing:
            raise DeliveryError(f"{self.name} rejected {address}")
        self.sent.append((address, text))


class FakeCaller:
    def __init__(self, error=None):
        self.error  = error
        self.called = []

    def call(self, address):
        if self.error is not None:
            raise self.error
        self.called.append(address)


class FastLocationProvider:
    def __init__(self, location):
        self.location = location

    def request_fix(self, timeout):
        return self.location


class SlowLocationProvider:
    def __init__(self, delay=2.0):
        self.delay   = delay
        self.release = threading.Event()

    def request_fix(self, timeout):
        self.release.wait(self.delay)
        return Location(0.0, 0.0)


class FailingLocationProvider:
    def request_fix(self, timeout):
        raise RuntimeError("GPS unavailable")


class StubModel:
    """Minimal stand-in for a scikit-learn estimator."""

    def __init__(self, probability=0.9, error=None):
        self.probability = probability
        self.error       = error
        self.seen        = []

    def predict_proba(self, x):
        if self.error is not None:
            raise self.error
        self.seen.append(np.asarray(x))
        return np.array([[1.0 - self.probability, self.probability]])


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def fake_caller():
    return FakeCaller


@pytest.fixture
def stub_model():
    return StubModel


@pytest.fixture
def location_providers():
    return {
        "fast":    FastLocationProvider,
        "slow":    SlowLocationProvider,
        "failing": FailingLocationProvider,
    }


@pytest.fixture
def home_location():
    return Location(40.7128, -74.0060, accuracy_m=10.0, timestamp=time.time())


@pytest.fixture
def contacts():
    return [
        EmergencyContact("Susan", "+12125551234", is_primary=True),
        EmergencyContact("David", "+13105559876"),
    ]


@pytest.fixture
def alert_config(contacts):
    return AlertConfig(user_name="Margaret", contacts=contacts)
