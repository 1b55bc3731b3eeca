"""
End-to-end tests: samples in, alerts out.

The evaluation thread is slowed to a crawl and evaluate_pending() / tick()
are called by hand so each step is deterministic.
"""
import os
from unittest.mock import patch

import pytest

from monitoring import FallMonitor, MonitorConfig
from response import EscalationDispatcher, LocationResolver, SessionState
from response.emergency_alert import SMS, WHATSAPP


@pytest.fixture
def config(contacts):
    return MonitorConfig(
        user_name="Margaret",
        contacts=contacts,
        countdown_seconds=2,
        evaluation_interval=60.0,
    )


@pytest.fixture
def channels(fake_channel):
    return {WHATSAPP: fake_channel(WHATSAPP), SMS: fake_channel(SMS)}


@pytest.fixture
def monitor(config, channels):
    dispatcher = EscalationDispatcher(config.to_alert_config(), channels)
    monitor = FallMonitor(config, dispatcher=dispatcher, auto_tick=False)
    monitor.start()
    yield monitor
    if monitor.monitoring:
        monitor.stop()


def _feed(monitor, window):
    for sample in window:
        monitor.add_sample(sample)
    return monitor.pipeline.evaluate_pending()


class TestFallMonitor:

    def test_calm_motion_starts_nothing(self, monitor, calm_window):
        _feed(monitor, calm_window)
        assert monitor.status().state is SessionState.IDLE
        assert monitor.status().total_falls_detected == 0

    def test_fall_escalates_when_not_cancelled(self, monitor, fall_window, channels):
        _feed(monitor, fall_window)
        status = monitor.status()
        assert status.state is SessionState.COUNTDOWN_ACTIVE
        assert status.countdown_remaining == 2
        assert status.describe() == "Fall detected — alerting in 2s"

        monitor.sessions.tick()
        monitor.sessions.tick()
        assert monitor.sessions.wait_until_idle(timeout=2.0)

        assert monitor.last_report.summary == "Alerts sent to 2 of 2 contacts"
        text = channels[WHATSAPP].sent[0][1]
        assert "Margaret may have fallen" in text
        assert monitor.status().total_falls_detected == 1

    def test_cancel_teaches_the_suppressor(self, monitor, fall_window, channels):
        _feed(monitor, fall_window)
        assert monitor.cancel() is True

        status = monitor.status()
        assert status.false_positives == 1
        assert status.learned_patterns == 1
        assert channels[WHATSAPP].sent == []

        # the same motion is now recognised as a false alarm
        results = _feed(monitor, fall_window)
        assert all(not r.classification.is_fall for r in results)
        assert results[-1].classification.similar_to_false_alarm is True
        assert monitor.status().state is SessionState.IDLE

    def test_fall_signal_during_countdown_is_ignored(self, monitor, fall_window):
        fired = []
        monitor.on_fall_detected = fired.append

        _feed(monitor, fall_window)
        _feed(monitor, fall_window)

        assert len(fired) == 1
        assert fired[0] == pytest.approx(0.75)
        assert monitor.status().total_falls_detected == 1

    def test_confirm(self, monitor, fall_window):
        _feed(monitor, fall_window)
        assert monitor.confirm() is True
        assert monitor.sessions.wait_until_idle(timeout=2.0)
        assert monitor.last_report is not None

    def test_stop_aborts_countdown(self, monitor, fall_window, channels):
        _feed(monitor, fall_window)
        monitor.stop()

        assert monitor.status().state is SessionState.IDLE
        assert monitor.status().describe() == "Monitoring paused"
        assert monitor.counters.recent_sessions()[-1].outcome == "aborted"
        assert channels[WHATSAPP].sent == []

    def test_samples_ignored_while_stopped(self, monitor, calm_window):
        monitor.stop()
        for sample in calm_window:
            monitor.add_sample(sample)
        assert monitor.pipeline.buffered_samples == 0

    def test_send_test_alert(self, monitor, channels):
        statuses = []
        monitor.on_status = statuses.append

        report = monitor.send_test_alert()

        assert report.test_mode is True
        assert channels[WHATSAPP].sent[0][1].startswith("[TEST]")
        assert monitor.status().state is SessionState.IDLE
        assert statuses

    def test_session_state_callback(self, config, channels, fall_window):
        seen = []
        dispatcher = EscalationDispatcher(config.to_alert_config(), channels)
        monitor = FallMonitor(
            config,
            dispatcher=dispatcher,
            on_session_state_changed=lambda state, remaining: seen.append((state, remaining)),
            auto_tick=False,
        )
        monitor.start()
        try:
            _feed(monitor, fall_window)
            monitor.cancel()
        finally:
            monitor.stop()
        assert seen == [
            (SessionState.COUNTDOWN_ACTIVE, 2),
            (SessionState.CANCELLED, 2),
            (SessionState.IDLE, 0),
        ]

    def test_learned_history_persists(self, contacts, channels, fall_window, tmp_path):
        config = MonitorConfig(
            user_name="Margaret",
            contacts=contacts,
            evaluation_interval=60.0,
            history_path=tmp_path / "false_alarms.json",
        )
        dispatcher = EscalationDispatcher(config.to_alert_config(), channels)

        first = FallMonitor(config, dispatcher=dispatcher, auto_tick=False)
        first.start()
        _feed(first, fall_window)
        first.cancel()
        first.stop()

        second = FallMonitor(config, dispatcher=dispatcher, auto_tick=False)
        assert second.status().learned_patterns == 1

    def test_degraded_escalation_still_completes(self, config, fake_channel, location_providers, fall_window):
        provider = location_providers["slow"](delay=2.0)
        whatsapp = fake_channel(WHATSAPP, failing={"+12125551234"})
        sms = fake_channel(SMS)
        dispatcher = EscalationDispatcher(
            config.to_alert_config(),
            {WHATSAPP: whatsapp, SMS: sms},
            location=LocationResolver(provider, timeout=0.05),
        )
        monitor = FallMonitor(config, dispatcher=dispatcher, auto_tick=False)
        monitor.start()
        try:
            _feed(monitor, fall_window)
            monitor.confirm()
            assert monitor.sessions.wait_until_idle(timeout=2.0)
        finally:
            provider.release.set()
            monitor.stop()

        report = monitor.last_report
        assert report.location is None
        assert report.delivered_via("+12125551234") == SMS
        assert monitor.counters.recent_sessions()[-1].outcome == "completed"

    def test_invalid_config(self, contacts, channels):
        config = MonitorConfig(contacts=contacts, sensitivity_level=0)
        with pytest.raises(ValueError):
            FallMonitor(config, dispatcher=EscalationDispatcher(config.to_alert_config(), channels))

    def test_twilio_credentials_required_without_dispatcher(self, config):
        with patch.dict(os.environ, {}, clear=True), patch("response.emergency_alert.load_dotenv"):
            with pytest.raises(EnvironmentError):
                FallMonitor(config)
