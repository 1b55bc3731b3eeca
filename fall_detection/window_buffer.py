# fall_detection/window_buffer.py

import logging
import threading
from collections import deque
from typing import Deque, Optional, Tuple

from .models import Sample

logger = logging.getLogger(__name__)

WINDOW_SIZE         = 50   # samples per window, ~1 s at 50 Hz
OVERLAP_SIZE        = 25   # samples shared by consecutive windows
MAX_PENDING_WINDOWS = 20   # ~10 s of windows waiting for the evaluation tick


class WindowBuffer:
    """
    Thread-safe sliding window of motion samples.

    append() is called from the sensor path. The moment `capacity` samples
    have accumulated it cuts an immutable snapshot onto a pending queue and
    keeps only the newest `overlap` samples, so windows are cut at the
    sample rate no matter how late the evaluation tick runs.

    drain_window() is called from the evaluation tick and hands out pending
    windows oldest first. Only if the tick stalls for more than
    `max_pending` windows is the oldest pending window dropped (logged).
    """

    def __init__(
        self,
        capacity: int = WINDOW_SIZE,
        overlap: int = OVERLAP_SIZE,
        max_pending: int = MAX_PENDING_WINDOWS,
    ):
        if capacity <= 0:
            raise ValueError(f'capacity must be positive, got {capacity}')
        if not 0 <= overlap < capacity:
            raise ValueError(
                f'overlap must be in [0, capacity), got overlap={overlap} capacity={capacity}'
            )
        if max_pending <= 0:
            raise ValueError(f'max_pending must be positive, got {max_pending}')
        self.capacity = capacity
        self.overlap  = overlap
        self._lock    = threading.Lock()
        self._samples: Deque[Sample] = deque()
        self._pending: Deque[Tuple[Sample, ...]] = deque()
        self._max_pending = max_pending
        self.dropped_windows = 0

    def append(self, sample: Sample) -> None:
        """Add a sample to the tail. Timestamps are not reordered."""
        with self._lock:
            self._samples.append(sample)
            if len(self._samples) < self.capacity:
                return

            if len(self._pending) >= self._max_pending:
                self._pending.popleft()
                self.dropped_windows += 1
                logger.warning('Evaluation is behind, dropped oldest pending window (%d so far)',
                               self.dropped_windows)
            self._pending.append(tuple(self._samples))
            for _ in range(self.capacity - self.overlap):
                self._samples.popleft()

    @property
    def is_ready(self) -> bool:
        with self._lock:
            return bool(self._pending)

    @property
    def pending_windows(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain_window(self) -> Optional[Tuple[Sample, ...]]:
        """Oldest full window not yet evaluated, or None while still filling."""
        with self._lock:
            return self._pending.popleft() if self._pending else None

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
            self._pending.clear()

    def __len__(self) -> int:
        """Samples collected towards the next window."""
        with self._lock:
            return len(self._samples)
