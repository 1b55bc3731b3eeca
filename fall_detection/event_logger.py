import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

logger = logging.getLogger(__name__)

# How many finished sessions to keep for the status report
MAX_SESSION_RECORDS = 50


@dataclass
class SessionRecord:
    session_id: int
    start_time: float
    end_time: float
    outcome: str                       # "completed" | "cancelled" | "aborted"
    trigger_confidence: float
    delivered: int = 0                 # contacts reached
    contacts: int = 0                  # contacts attempted
    logged_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def duration(self) -> float:
        return max(0.0, self.end_time - self.start_time)


class EventLogger:
    """
    Lifetime counters and a rolling history of emergency sessions.

    The session state machine calls record_fall_detected() when a countdown
    starts, record_false_positive() when the user cancels, and
    record_session() when a session ends. Nothing here is read back by the
    detection core; it exists for status reporting and diagnostics.
    """

    def __init__(self, max_records: int = MAX_SESSION_RECORDS):
        self._lock = threading.Lock()

        # Rolling buffer, drops the oldest record when full
        self.sessions = deque(maxlen=max_records)

        self.total_falls_detected = 0
        self.false_positives      = 0
        self.last_fall_time: Optional[float] = None

    def record_fall_detected(self, confidence: float) -> None:
        with self._lock:
            self.total_falls_detected += 1
            self.last_fall_time = time.time()
            total = self.total_falls_detected
        logger.info('Fall event #%d recorded | confidence=%.3f', total, confidence)

    def record_false_positive(self) -> None:
        with self._lock:
            self.false_positives += 1
            total = self.false_positives
        logger.info('False positive #%d recorded', total)

    def record_session(self, record: SessionRecord) -> None:
        with self._lock:
            self.sessions.append(record)
        logger.info(
            'Session %d %s | duration=%.1fs | confidence=%.3f | delivered=%d/%d',
            record.session_id,
            record.outcome,
            record.duration,
            record.trigger_confidence,
            record.delivered,
            record.contacts,
        )

    def recent_sessions(self) -> List[SessionRecord]:
        with self._lock:
            return list(self.sessions)

    def reset(self):
        """Clear counters and history (e.g. from a "reset statistics" action)."""
        with self._lock:
            self.sessions.clear()
            self.total_falls_detected = 0
            self.false_positives      = 0
            self.last_fall_time       = None
