"""
Tests for the emergency session state machine.

Ticks are driven by hand (auto_tick=False) unless a test says otherwise.
"""
import threading
from unittest.mock import MagicMock

import pytest

from fall_detection import EventLogger
from response import EmergencySessionManager, EscalationReport, SessionState


@pytest.fixture
def transitions():
    return []


@pytest.fixture
def escalate():
    return MagicMock(return_value=EscalationReport(contacts=2))


@pytest.fixture
def learner():
    return MagicMock()


@pytest.fixture
def counters():
    return EventLogger()


@pytest.fixture
def manager(escalate, learner, counters, transitions):
    return EmergencySessionManager(
        escalate,
        countdown_seconds=3,
        learner=learner,
        counters=counters,
        on_state_changed=lambda state, remaining: transitions.append((state, remaining)),
        auto_tick=False,
    )


class TestCountdown:

    def test_starts_idle(self, manager):
        assert manager.state is SessionState.IDLE
        assert manager.remaining == 0
        assert manager.snapshot() is None

    def test_countdown_expires_into_escalation(self, manager, escalate, counters, transitions, fall_features):
        assert manager.start_session(0.8, features=fall_features) is True
        assert manager.state is SessionState.COUNTDOWN_ACTIVE
        assert manager.remaining == 3

        manager.tick()
        manager.tick()
        assert manager.remaining == 1
        escalate.assert_not_called()

        manager.tick()
        assert manager.wait_until_idle(timeout=2.0)

        escalate.assert_called_once()
        assert [state for state, _ in transitions] == [
            SessionState.COUNTDOWN_ACTIVE,
            SessionState.COUNTDOWN_ACTIVE,
            SessionState.COUNTDOWN_ACTIVE,
            SessionState.ACTIVATING,
            SessionState.COMPLETED,
            SessionState.IDLE,
        ]
        assert [remaining for _, remaining in transitions[:3]] == [3, 2, 1]

        record = counters.recent_sessions()[-1]
        assert record.outcome == "completed"
        assert record.contacts == 2
        assert counters.total_falls_detected == 1

    def test_second_fall_is_ignored(self, manager, counters):
        assert manager.start_session(0.8) is True
        assert manager.start_session(0.9) is False
        assert manager.snapshot().trigger_confidence == 0.8
        assert counters.total_falls_detected == 1

    def test_stale_tick_is_ignored(self, manager):
        manager.start_session(0.8)
        session_id = manager.snapshot().session_id
        manager.tick(session_id + 99)
        assert manager.remaining == 3
        manager.tick(session_id)
        assert manager.remaining == 2

    def test_tick_while_idle_is_noop(self, manager, escalate):
        manager.tick()
        assert manager.state is SessionState.IDLE
        escalate.assert_not_called()

    def test_countdown_must_be_positive(self, escalate):
        with pytest.raises(ValueError):
            EmergencySessionManager(escalate, countdown_seconds=0)

    def test_auto_tick(self, escalate):
        manager = EmergencySessionManager(escalate, countdown_seconds=2, tick_interval=0.01)
        manager.start_session(0.8)
        assert manager.wait_until_idle(timeout=2.0)
        escalate.assert_called_once()


class TestCancel:

    def test_cancel_learns_once(self, manager, learner, counters, escalate, fall_features):
        manager.start_session(0.8, features=fall_features)
        manager.tick()

        assert manager.cancel() is True
        assert manager.cancel() is False

        learner.learn.assert_called_once_with(fall_features, 0.8)
        assert counters.false_positives == 1
        assert counters.recent_sessions()[-1].outcome == "cancelled"
        assert manager.state is SessionState.IDLE
        escalate.assert_not_called()

    def test_cancel_reports_cancelled_then_idle(self, manager, transitions):
        manager.start_session(0.8)
        manager.cancel()
        assert transitions[-2:] == [(SessionState.CANCELLED, 3), (SessionState.IDLE, 0)]

    def test_cancel_when_idle_is_noop(self, manager, learner, counters):
        assert manager.cancel() is False
        learner.learn.assert_not_called()
        assert counters.false_positives == 0

    def test_cancel_without_features_skips_learning(self, manager, learner, counters):
        manager.start_session(0.8)
        assert manager.cancel() is True
        learner.learn.assert_not_called()
        assert counters.false_positives == 1

    def test_cancel_during_escalation_is_noop(self, learner, fall_features):
        release = threading.Event()
        entered = threading.Event()

        def slow_escalation(session):
            entered.set()
            release.wait(2.0)
            return EscalationReport()

        manager = EmergencySessionManager(slow_escalation, countdown_seconds=1, learner=learner, auto_tick=False)
        manager.start_session(0.8, features=fall_features)
        manager.tick()
        assert entered.wait(2.0)

        assert manager.state is SessionState.ACTIVATING
        assert manager.cancel() is False
        assert manager.start_session(0.9) is False

        release.set()
        assert manager.wait_until_idle(timeout=2.0)
        learner.learn.assert_not_called()

    def test_learner_failure_still_finishes(self, manager, learner, fall_features):
        learner.learn.side_effect = RuntimeError("disk full")
        manager.start_session(0.8, features=fall_features)
        assert manager.cancel() is True
        assert manager.state is SessionState.IDLE

    def test_cancel_and_final_tick_race(self, escalate, learner, fall_features):
        # whichever wins, exactly one outcome is recorded
        for _ in range(20):
            counters = EventLogger()
            manager = EmergencySessionManager(
                escalate, countdown_seconds=1, learner=learner, counters=counters, auto_tick=False,
            )
            manager.start_session(0.8, features=fall_features)
            threads = [threading.Thread(target=manager.tick), threading.Thread(target=manager.cancel)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            assert manager.wait_until_idle(timeout=2.0)
            assert [r.outcome for r in counters.recent_sessions()] in (["completed"], ["cancelled"])


class TestConfirmAndAbort:

    def test_confirm_skips_countdown(self, manager, escalate):
        assert manager.confirm() is False
        manager.start_session(0.8)

        assert manager.confirm() is True
        assert manager.wait_until_idle(timeout=2.0)

        session = escalate.call_args[0][0]
        assert session.confirmed is True
        assert session.state is SessionState.ACTIVATING

    def test_abort_drops_countdown(self, manager, escalate, learner, counters):
        manager.start_session(0.8)
        assert manager.abort("monitoring stopped") is True

        assert manager.state is SessionState.IDLE
        assert counters.recent_sessions()[-1].outcome == "aborted"
        assert counters.false_positives == 0
        learner.learn.assert_not_called()
        escalate.assert_not_called()

    def test_abort_when_idle(self, manager):
        assert manager.abort() is False

    def test_escalation_error_still_completes(self, manager, escalate, counters, transitions):
        escalate.side_effect = RuntimeError("network down")
        manager.start_session(0.8)
        manager.confirm()

        assert manager.wait_until_idle(timeout=2.0)
        record = counters.recent_sessions()[-1]
        assert record.outcome == "completed"
        assert record.delivered == 0
        assert (SessionState.COMPLETED, 0) in transitions

    def test_new_session_after_completion(self, manager):
        manager.start_session(0.8)
        manager.confirm()
        assert manager.wait_until_idle(timeout=2.0)
        assert manager.start_session(0.9) is True
        assert manager.snapshot().session_id == 2

    def test_failing_state_callback_does_not_break_session(self, escalate):
        def broken(state, remaining):
            raise RuntimeError("UI gone")

        manager = EmergencySessionManager(escalate, countdown_seconds=1, on_state_changed=broken, auto_tick=False)
        manager.start_session(0.8)
        manager.tick()
        assert manager.wait_until_idle(timeout=2.0)
        escalate.assert_called_once()
