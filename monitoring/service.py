"""
monitoring/service.py

FallMonitor — wires fall detection to the emergency response.

    sensor ──add_sample──▶ DetectionPipeline ──fall──▶ EmergencySessionManager
                                 ▲                          │ cancel
                                 └── AdaptiveSuppressor ◀───┘ (learn)
                                                            │ activate
                                                            ▼
                                                      run_escalation ──▶ channels

Everything is constructed once here and handed to the components that
need it; nothing is a global.

Usage
-----
    from monitoring import FallMonitor, load_config

    monitor = FallMonitor(
        load_config(),
        on_session_state_changed=lambda state, remaining: print(state, remaining),
    )
    monitor.start()
    ...
    monitor.add_sample(sample)      # from the sensor thread
    monitor.cancel()                # from the UI: "I'm okay"
    ...
    monitor.stop()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from fall_detection import (
    AdaptiveSuppressor,
    Classifier,
    DetectionPipeline,
    EventLogger,
    MotionFeatures,
    Sample,
    WindowResult,
    build_classifier,
)
from monitoring.config import MonitorConfig
from response import (
    EmergencySession,
    EmergencySessionManager,
    EscalationDispatcher,
    EscalationReport,
    FixedLocationProvider,
    LocationResolver,
    SessionState,
    build_twilio_dispatcher,
    run_escalation,
)
from response.location import LocationProvider

logger = logging.getLogger(__name__)


@dataclass
class MonitorStatus:
    monitoring: bool
    state: SessionState
    countdown_remaining: int
    total_falls_detected: int
    false_positives: int
    learned_patterns: int
    classifier: str

    def describe(self) -> str:
        if not self.monitoring:
            return "Monitoring paused"
        if self.state is SessionState.COUNTDOWN_ACTIVE:
            return f"Fall detected — alerting in {self.countdown_remaining}s"
        if self.state is SessionState.ACTIVATING:
            return "Alerting emergency contacts"
        return "Monitoring for falls..."


class FallMonitor:
    """
    Parameters
    ----------
    config : MonitorConfig
        Validated on construction (ValueError if unusable).

    dispatcher : EscalationDispatcher | None
        Alert fan-out. If None, a Twilio dispatcher is built from the
        environment (EnvironmentError if credentials are missing).

    location_provider : LocationProvider | None
        Source of location fixes for the Twilio dispatcher built here.
        Defaults to the configured home coordinates, if any. Ignored when
        a dispatcher is passed in.

    on_window_ready, on_session_state_changed, on_fall_detected, on_status
        Observer callbacks. They are notifications only; exceptions they
        raise are logged and ignored.
    """

    def __init__(
        self,
        config: MonitorConfig,
        dispatcher: EscalationDispatcher | None = None,
        location_provider: LocationProvider | None = None,
        classifier: Classifier | None = None,
        counters: EventLogger | None = None,
        on_window_ready: Callable[[MotionFeatures], None] | None = None,
        on_session_state_changed: Callable[[SessionState, int], None] | None = None,
        on_fall_detected: Callable[[float], None] | None = None,
        on_status: Callable[[str], None] | None = None,
        auto_tick: bool = True,
    ):
        config.validate()
        self.config = config

        self.on_fall_detected = on_fall_detected
        self.on_status        = on_status

        self.suppressor = AdaptiveSuppressor(
            capacity      = config.false_alarm_capacity,
            learning_rate = config.learning_rate,
            history_path  = config.history_path,
        )
        self.counters = counters or EventLogger()

        self.pipeline = DetectionPipeline(
            classifier          = classifier or build_classifier(config.model_path, self.suppressor),
            suppressor          = self.suppressor,
            sensitivity_level   = config.sensitivity_level,
            window_size         = config.window_size,
            overlap             = config.overlap,
            sample_rate_hz      = config.sample_rate_hz,
            evaluation_interval = config.evaluation_interval,
            on_window_ready     = on_window_ready,
            on_fall             = self._handle_fall,
        )

        if dispatcher is None:
            if location_provider is None and config.home_latitude is not None:
                location_provider = FixedLocationProvider(config.home_latitude, config.home_longitude)
            dispatcher = build_twilio_dispatcher(
                config.to_alert_config(),
                location=LocationResolver(location_provider, timeout=config.location_timeout),
            )
        self.dispatcher = dispatcher

        self.sessions = EmergencySessionManager(
            escalate          = self._escalate,
            countdown_seconds = config.countdown_seconds,
            learner           = self.suppressor,
            counters          = self.counters,
            on_state_changed  = on_session_state_changed,
            auto_tick         = auto_tick,
        )

        self._monitoring = False
        self.last_report: EscalationReport | None = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._monitoring:
            logger.warning("Monitoring already started")
            return
        self._monitoring = True
        self.pipeline.start()
        logger.info(
            "Fall monitoring started | sensitivity=%d | classifier=%s",
            self.config.sensitivity_level,
            self.pipeline.classifier.name,
        )

    def stop(self) -> None:
        """Stop detection. A running countdown is dropped without alerting."""
        if not self._monitoring:
            logger.warning("Monitoring not active")
            return
        self._monitoring = False
        self.pipeline.stop()
        self.sessions.abort("monitoring stopped")
        logger.info("Fall monitoring stopped")

    @property
    def monitoring(self) -> bool:
        return self._monitoring

    # ── Inputs ────────────────────────────────────────────────────────────────

    def add_sample(self, sample: Sample) -> None:
        """Sensor path: never blocks on detection or the session."""
        if self._monitoring:
            self.pipeline.add_sample(sample)

    def cancel(self) -> bool:
        return self.sessions.cancel()

    def confirm(self) -> bool:
        return self.sessions.confirm()

    def send_test_alert(self) -> EscalationReport:
        """Run the escalation once in test mode, outside any session."""
        return run_escalation(self.dispatcher, on_status=self.on_status, test_mode=True)

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            monitoring           = self._monitoring,
            state                = self.sessions.state,
            countdown_remaining  = self.sessions.remaining,
            total_falls_detected = self.counters.total_falls_detected,
            false_positives      = self.counters.false_positives,
            learned_patterns     = len(self.suppressor),
            classifier           = self.pipeline.classifier.name,
        )

    # ── Callbacks ─────────────────────────────────────────────────────────────

    def _handle_fall(self, result: WindowResult) -> None:
        # Runs on the detection thread; only the fall signal crosses over.
        if not self._monitoring:
            return
        confidence = result.classification.confidence
        started = self.sessions.start_session(confidence, result.window, result.features)
        if started and self.on_fall_detected is not None:
            try:
                self.on_fall_detected(confidence)
            except Exception:
                logger.error("on_fall_detected callback failed", exc_info=True)

    def _escalate(self, session: EmergencySession) -> EscalationReport:
        logger.warning(
            "Escalating session %d | confirmed=%s | confidence=%.3f",
            session.session_id,
            session.confirmed,
            session.trigger_confidence,
        )
        report = run_escalation(self.dispatcher, on_status=self.on_status)
        self.last_report = report
        return report
