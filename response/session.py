"""
response/session.py

Emergency session state machine.

    IDLE ──fall──▶ COUNTDOWN_ACTIVE ──cancel──▶ CANCELLED ──▶ IDLE
                        │    ▲
                   tick │    │ (remaining > 0)
                        ▼    │
                        ├────┘
                        │ remaining == 0 / confirm
                        ▼
                    ACTIVATING ──escalation done──▶ COMPLETED ──▶ IDLE

At most one session exists at a time. Every transition happens under a
single re-entrant lock, so a user cancel racing the final countdown tick
resolves to exactly one of CANCELLED or ACTIVATING. The escalation itself
runs on a worker thread; the lock is only taken again to record the
result.

State is never persisted: a new manager always starts IDLE.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

from fall_detection.event_logger import SessionRecord
from fall_detection.models import MotionFeatures, Sample
from response.emergency_alert import EscalationReport

logger = logging.getLogger(__name__)

COUNTDOWN_SECONDS = 15
TICK_INTERVAL     = 1.0


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class SessionState(Enum):
    IDLE             = "idle"
    COUNTDOWN_ACTIVE = "countdown_active"
    CANCELLED        = "cancelled"
    ACTIVATING       = "activating"
    COMPLETED        = "completed"


@dataclass
class EmergencySession:
    session_id: int
    state: SessionState
    start_time: float
    countdown_remaining: int
    trigger_confidence: float
    trigger_window: tuple[Sample, ...] = ()
    trigger_features: MotionFeatures | None = None
    confirmed: bool = False                 # True if the user skipped the countdown
    outcome: str | None = None              # "completed" | "cancelled" | "aborted"
    end_time: float | None = None
    report: EscalationReport | None = None


class FalseAlarmLearner(Protocol):
    def learn(self, features: MotionFeatures, confidence: float) -> None: ...


class EventCounters(Protocol):
    def record_fall_detected(self, confidence: float) -> None: ...
    def record_false_positive(self) -> None: ...
    def record_session(self, record: SessionRecord) -> None: ...


StateCallback = Callable[[SessionState, int], None]
Escalation    = Callable[[EmergencySession], Optional[EscalationReport]]


# ---------------------------------------------------------------------------
# Countdown ticker
# ---------------------------------------------------------------------------

class CountdownTicker:
    """
    Calls `callback` every `interval` seconds on a daemon thread until
    cancelled. cancel() only sets a flag, so it is safe to call from the
    callback itself or while holding the session lock.
    """

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self._stop    = threading.Event()
        self._thread  = threading.Thread(target=self._run, name="countdown", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.callback()


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class EmergencySessionManager:
    """
    Single owner of the current EmergencySession.

    Parameters
    ----------
    escalate : Callable[[EmergencySession], EscalationReport | None]
        Runs the alert fan-out for an activated session. Called on a
        worker thread; exceptions are logged and the session still
        completes.

    countdown_seconds : int
        Seconds the user has to cancel before alerts go out.

    learner : FalseAlarmLearner | None
        Told about the trigger window whenever the user cancels.

    counters : EventCounters | None
        Lifetime fall / false-positive counters and session history.

    on_state_changed : Callable[[SessionState, int], None] | None
        Notified with (state, remaining seconds) on every transition and
        tick. Runs while the session lock is held, so keep it short.

    auto_tick : bool
        If True a 1 Hz CountdownTicker drives tick(). Tests turn this off
        and call tick() themselves.
    """

    def __init__(
        self,
        escalate: Escalation,
        countdown_seconds: int = COUNTDOWN_SECONDS,
        learner: FalseAlarmLearner | None = None,
        counters: EventCounters | None = None,
        on_state_changed: StateCallback | None = None,
        auto_tick: bool = True,
        tick_interval: float = TICK_INTERVAL,
    ):
        if countdown_seconds < 1:
            raise ValueError(f"countdown_seconds must be at least 1, got {countdown_seconds}")

        self.countdown_seconds = countdown_seconds
        self.learner           = learner
        self.counters          = counters
        self.on_state_changed  = on_state_changed
        self.auto_tick         = auto_tick
        self.tick_interval     = tick_interval
        self._escalate         = escalate

        self._lock    = threading.RLock()
        self._idle    = threading.Condition(self._lock)
        self._session: EmergencySession | None = None
        self._ticker: CountdownTicker | None = None
        self._next_id = 0

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._session.state if self._session else SessionState.IDLE

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._session.countdown_remaining if self._session else 0

    def snapshot(self) -> EmergencySession | None:
        """Copy of the live session, or None when idle."""
        with self._lock:
            return replace(self._session) if self._session else None

    # ── Inputs ────────────────────────────────────────────────────────────────

    def start_session(
        self,
        confidence: float,
        window: Sequence[Sample] = (),
        features: MotionFeatures | None = None,
    ) -> bool:
        """
        IDLE -> COUNTDOWN_ACTIVE. Returns False (and does nothing) if a
        session is already running.
        """
        with self._lock:
            if self._session is not None:
                logger.warning(
                    "Fall signal ignored | session %d already %s",
                    self._session.session_id,
                    self._session.state.value,
                )
                return False

            self._next_id += 1
            session = EmergencySession(
                session_id          = self._next_id,
                state               = SessionState.COUNTDOWN_ACTIVE,
                start_time          = time.time(),
                countdown_remaining = self.countdown_seconds,
                trigger_confidence  = confidence,
                trigger_window      = tuple(window),
                trigger_features    = features,
            )
            self._session = session
            logger.warning(
                "Emergency countdown started | session=%d | confidence=%.3f | %ds",
                session.session_id,
                confidence,
                self.countdown_seconds,
            )

            self._call(self.counters, "record_fall_detected", confidence)
            self._notify(session)

            if self.auto_tick:
                session_id = session.session_id
                self._ticker = CountdownTicker(self.tick_interval, lambda: self.tick(session_id))
                self._ticker.start()
            return True

    def tick(self, session_id: int | None = None) -> None:
        """
        One countdown second. At zero the session activates on its own.
        Ticks for a different (older) session, or outside the countdown,
        are ignored.
        """
        with self._lock:
            session = self._session
            if (
                session is None
                or session.state is not SessionState.COUNTDOWN_ACTIVE
                or (session_id is not None and session_id != session.session_id)
            ):
                logger.debug("Stale countdown tick ignored (session_id=%s)", session_id)
                return

            session.countdown_remaining = max(0, session.countdown_remaining - 1)
            if session.countdown_remaining > 0:
                self._notify(session)
                return

            logger.warning("Countdown expired without cancel | session=%d", session.session_id)
            self._activate(session)

    def cancel(self) -> bool:
        """
        User says "I'm fine": COUNTDOWN_ACTIVE -> CANCELLED -> IDLE.
        The trigger window is learned as a false alarm. No-op otherwise.
        """
        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.COUNTDOWN_ACTIVE:
                logger.info("Cancel ignored | state=%s", self.state.value)
                return False

            self._stop_ticker()
            session.state = SessionState.CANCELLED
            logger.info(
                "Emergency cancelled by user | session=%d | remaining=%ds",
                session.session_id,
                session.countdown_remaining,
            )
            self._notify(session)

            if session.trigger_features is not None:
                self._call(self.learner, "learn", session.trigger_features, session.trigger_confidence)
            else:
                logger.warning("Cancelled session %d has no trigger features to learn", session.session_id)
            self._call(self.counters, "record_false_positive")

            self._finish(session, "cancelled")
            return True

    def confirm(self) -> bool:
        """User asks for help now: COUNTDOWN_ACTIVE -> ACTIVATING. No-op otherwise."""
        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.COUNTDOWN_ACTIVE:
                logger.info("Confirm ignored | state=%s", self.state.value)
                return False

            session.confirmed = True
            logger.warning("Emergency confirmed by user | session=%d", session.session_id)
            self._activate(session)
            return True

    def abort(self, reason: str = "aborted") -> bool:
        """
        Drop a running countdown without alerting or learning, e.g. when
        monitoring is switched off. An escalation already in flight is
        left to finish.
        """
        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.COUNTDOWN_ACTIVE:
                return False

            self._stop_ticker()
            logger.info("Emergency countdown aborted | session=%d | reason=%s", session.session_id, reason)
            self._finish(session, "aborted")
            return True

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no session is live. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._session is None, timeout)

    # ── Internals (called with the lock held) ────────────────────────────────

    def _activate(self, session: EmergencySession) -> None:
        self._stop_ticker()
        session.state = SessionState.ACTIVATING
        session.countdown_remaining = 0
        logger.warning("Activating emergency procedures | session=%d", session.session_id)
        self._notify(session)

        threading.Thread(
            target=self._run_escalation,
            args=(session,),
            name=f"escalation-{session.session_id}",
            daemon=True,
        ).start()

    def _run_escalation(self, session: EmergencySession) -> None:
        # Worker thread: the lock is NOT held while the escalation runs.
        report = None
        try:
            report = self._escalate(replace(session))
        except Exception:
            logger.error("Escalation failed | session=%d", session.session_id, exc_info=True)

        with self._lock:
            session.report = report
            session.state  = SessionState.COMPLETED
            self._notify(session)
            self._finish(session, "completed")

    def _finish(self, session: EmergencySession, outcome: str) -> None:
        session.outcome  = outcome
        session.end_time = time.time()

        report = session.report
        self._call(
            self.counters,
            "record_session",
            SessionRecord(
                session_id         = session.session_id,
                start_time         = session.start_time,
                end_time           = session.end_time,
                outcome            = outcome,
                trigger_confidence = session.trigger_confidence,
                delivered          = len(report.delivered_contacts) if report else 0,
                contacts           = report.contacts if report else 0,
            ),
        )

        self._session = None
        logger.info(
            "Session %d finished | outcome=%s | duration=%.1fs",
            session.session_id,
            outcome,
            session.end_time - session.start_time,
        )
        self._notify_state(SessionState.IDLE, 0)
        self._idle.notify_all()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _notify(self, session: EmergencySession) -> None:
        self._notify_state(session.state, session.countdown_remaining)

    def _notify_state(self, state: SessionState, remaining: int) -> None:
        if self.on_state_changed is None:
            return
        try:
            self.on_state_changed(state, remaining)
        except Exception:
            logger.error("State callback failed", exc_info=True)

    @staticmethod
    def _call(target: Any, method: str, *args) -> None:
        """Call an optional collaborator; its failures never break the session."""
        if target is None:
            return
        try:
            getattr(target, method)(*args)
        except Exception:
            logger.error("%s.%s failed", type(target).__name__, method, exc_info=True)
