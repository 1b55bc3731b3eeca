# run_monitor.py
"""
Replays motion samples through a FallMonitor.

Usage
-----
    python run_monitor.py --simulate-fall --dry-run         # synthetic fall, print alerts
    python run_monitor.py --csv recording.csv                # real Twilio alerts
    python run_monitor.py --csv recording.csv --cancel-after 3

CSV columns: timestamp (seconds), ax, ay, az and optionally gx, gy, gz.
Samples are replayed at their recorded pace so the 100 ms evaluation tick
sees them the way a live sensor would deliver them.
"""

import argparse
import csv
import logging
import math
import threading
import time
from pathlib import Path

from fall_detection import Sample
from monitoring import FallMonitor, load_config
from response import EscalationDispatcher, LocationResolver
from response.emergency_alert import CALL, SMS, WHATSAPP, ConsoleChannel

logger = logging.getLogger('run_monitor')

GRAVITY = 9.81


def read_samples(path):
    with open(path, newline='', encoding='utf-8') as f:
        for row in csv.DictReader(f):
            gyro = None
            if row.get('gx') not in (None, ''):
                gyro = (float(row['gx']), float(row['gy']), float(row['gz']))
            yield Sample(
                timestamp = float(row['timestamp']),
                accel     = (float(row['ax']), float(row['ay']), float(row['az'])),
                gyro      = gyro,
            )


def synthetic_fall(sample_rate_hz=50.0, seconds_before=3.0, seconds_after=3.0):
    """Standing still, a short free-fall, one hard impact, then lying on the side."""
    dt = 1.0 / sample_rate_hz
    t = 0.0

    def emit(accel):
        nonlocal t
        sample = Sample(timestamp=t, accel=accel)
        t += dt
        return sample

    for i in range(int(seconds_before * sample_rate_hz)):
        wobble = 0.05 * math.sin(i / 5.0)
        yield emit((wobble, 0.0, GRAVITY))
    for _ in range(6):
        yield emit((0.3, 0.2, 1.5))          # free-fall
    yield emit((4.0, 3.0, 28.0))             # impact
    for _ in range(int(seconds_after * sample_rate_hz)):
        yield emit((GRAVITY, 0.0, 0.3))      # lying on the side


def main(args):
    config = load_config(dotenv_path=args.env)
    if args.sensitivity is not None:
        config.sensitivity_level = args.sensitivity
    if args.countdown is not None:
        config.countdown_seconds = args.countdown

    dispatcher = None
    if args.dry_run:
        alert_config = config.to_alert_config()
        dispatcher = EscalationDispatcher(
            alert_config,
            channels={WHATSAPP: ConsoleChannel(WHATSAPP), SMS: ConsoleChannel(SMS)},
            caller=ConsoleChannel(CALL),
            location=LocationResolver(None),
        )

    monitor = FallMonitor(
        config,
        dispatcher=dispatcher,
        on_session_state_changed=lambda state, remaining: print(f'  session: {state.value:<16} {remaining:>3}s'),
        on_fall_detected=lambda confidence: print(f'FALL DETECTED  confidence={confidence:.2f}'),
        on_status=lambda msg: print(f'[STATUS] {msg}'),
    )

    if args.cancel_after is not None:
        def _cancel_later():
            # Wait for a countdown to start, then press "I'm okay"
            while monitor.monitoring and monitor.status().countdown_remaining == 0:
                time.sleep(0.1)
            time.sleep(args.cancel_after)
            if monitor.cancel():
                print("User cancelled the alert")
        threading.Thread(target=_cancel_later, daemon=True).start()

    samples = synthetic_fall(config.sample_rate_hz) if args.simulate_fall else read_samples(args.csv)

    monitor.start()
    print('Replaying samples — Ctrl+C to stop\n')
    try:
        previous = None
        for sample in samples:
            if previous is not None:
                time.sleep(max(0.0, min(1.0, sample.timestamp - previous)))
            previous = sample.timestamp
            monitor.add_sample(sample)

        # Give the last window and any session time to finish
        time.sleep(config.evaluation_interval * 3)
        monitor.sessions.wait_until_idle(timeout=config.countdown_seconds + config.location_timeout + 10)
    except KeyboardInterrupt:
        pass
    finally:
        status = monitor.status()
        monitor.stop()

    print(f'\nFalls detected: {status.total_falls_detected}  '
          f'false positives: {status.false_positives}  '
          f'learned patterns: {status.learned_patterns}')
    if monitor.last_report is not None:
        print(monitor.last_report.summary)


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description='Replay motion samples through the fall monitor')
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--csv', type=Path, help='CSV file of samples')
    source.add_argument('--simulate-fall', action='store_true', help='Replay a synthetic fall')
    parser.add_argument('--dry-run', action='store_true', help='Print alerts instead of sending them')
    parser.add_argument('--env', default=None, help='Path to a .env file')
    parser.add_argument('--sensitivity', type=int, choices=range(1, 6), default=None)
    parser.add_argument('--countdown', type=int, default=None, help='Countdown seconds')
    parser.add_argument('--cancel-after', type=float, default=None,
                        help='Cancel the countdown this many seconds after it starts')
    main(parser.parse_args())
