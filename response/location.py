"""
response/location.py

Location lookup for emergency alerts.

The actual fix comes from an external provider (GPS, fused location, a
fixed address from config...). This module only bounds how long we wait
for it: the request runs on a worker thread and the alert goes out with
"Location unavailable" if nothing arrives in time.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

LOCATION_TIMEOUT    = 30.0          # seconds to wait for a fix
CACHE_MAX_AGE       = 5 * 60.0      # last known fix younger than this is still usable
LOCATION_UNAVAILABLE = "Location unavailable"


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy_m: float | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.latitude:.6f},{self.longitude:.6f}"

    def describe(self) -> str:
        text = f"Lat: {self.latitude:.6f}, Lon: {self.longitude:.6f}"
        if self.accuracy_m is not None:
            text += f" (Accuracy: {self.accuracy_m:.0f}m)"
        return text


class LocationProvider(Protocol):
    """Single-shot fix request. May block, may raise."""

    def request_fix(self, timeout: float) -> Location: ...


class FixedLocationProvider:
    """Always reports the same coordinates, e.g. a home address from config."""

    def __init__(self, latitude: float, longitude: float, accuracy_m: float | None = None):
        self.latitude   = latitude
        self.longitude  = longitude
        self.accuracy_m = accuracy_m

    def request_fix(self, timeout: float) -> Location:
        return Location(self.latitude, self.longitude, self.accuracy_m)


class LocationResolver:
    """
    Bounded-time wrapper around a LocationProvider.

    resolve() never raises and never waits longer than `timeout`. On
    timeout or provider error it falls back to the last fix it saw, if that
    fix is younger than `cache_max_age`, otherwise returns None.
    """

    def __init__(
        self,
        provider: LocationProvider | None,
        timeout: float = LOCATION_TIMEOUT,
        cache_max_age: float = CACHE_MAX_AGE,
    ):
        self.provider      = provider
        self.timeout       = timeout
        self.cache_max_age = cache_max_age
        self._last_known: Location | None = None

    def resolve(self, timeout: float | None = None) -> Location | None:
        if self.provider is None:
            logger.info("No location provider configured")
            return None

        timeout = self.timeout if timeout is None else timeout
        results: queue.Queue = queue.Queue(maxsize=1)

        def _request() -> None:
            try:
                results.put_nowait((self.provider.request_fix(timeout), None))
            except Exception as exc:
                results.put_nowait((None, exc))

        # Daemon thread: a hung provider is abandoned, never joined.
        threading.Thread(target=_request, name="location-fix", daemon=True).start()

        try:
            location, error = results.get(timeout=timeout)
        except queue.Empty:
            logger.warning("Location request timed out after %.1fs", timeout)
            return self._cached()

        if error is not None:
            logger.error("Location provider failed: %s", error)
            return self._cached()
        if location is None:
            return self._cached()

        self._last_known = location
        logger.info("Location resolved | %s", location.describe())
        return location

    def _cached(self) -> Location | None:
        cached = self._last_known
        if cached is not None and (time.time() - cached.timestamp) < self.cache_max_age:
            logger.info("Using last known location")
            return cached
        return None


def format_location(location: Location | None) -> str:
    return location.describe() if location is not None else LOCATION_UNAVAILABLE
