"""
Timing helpers for metrics.

Durations are reported in seconds as floats. The activation deadline is
passed in explicitly (read from settings at the edge) instead of being looked
up from the environment here.
"""

import time
from datetime import datetime
from typing import Optional, Union

from ..config.settings import DEFAULT_TIMEOUT_MS

Instant = Union[int, float, datetime]


def _to_millis(value: Instant) -> float:
    if isinstance(value, datetime):
        return value.timestamp() * 1000
    return float(value)


def duration_sec(start: Optional[Instant], end: Optional[Instant]) -> Optional[float]:
    """
    Seconds between two instants given as epoch millis or datetimes.

    Returns None if either end is missing.
    """
    if start is None or end is None:
        return None
    return (_to_millis(end) - _to_millis(start)) / 1000


def now_millis() -> int:
    return int(time.time() * 1000)


def time_until_activation_timeout(
    deadline_ms: Optional[int],
    now_ms: Optional[int] = None,
    default_ms: int = DEFAULT_TIMEOUT_MS,
) -> int:
    """
    Milliseconds left until the activation deadline.

    Without a deadline (or with one that is exactly now) the default timeout
    is assumed.
    """
    if deadline_ms is None:
        return default_ms
    if now_ms is None:
        now_ms = now_millis()
    return (deadline_ms - now_ms) or default_ms


class Timer:
    """
    Stopwatch for metrics.

    start() begins or continues a measurement, stop() ends it. A timer
    that never ran reports None for its durations.
    """

    def __init__(self) -> None:
        self._started_at: Optional[float] = None
        self._measured = False
        self._current = 0.0
        self._total = 0.0

    def start(self) -> "Timer":
        if self._started_at is None:
            self._started_at = time.perf_counter()
            self._measured = True
        return self

    def stop(self) -> None:
        if self._started_at is not None:
            self._current = time.perf_counter() - self._started_at
            self._total += self._current
            self._started_at = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def current_duration(self) -> Optional[float]:
        """Duration of the last start()/stop() span. Stops a running timer."""
        self.stop()
        return self._current if self._measured else None

    def total_duration(self) -> Optional[float]:
        """Sum of all start()/stop() spans. Stops a running timer."""
        self.stop()
        return self._total if self._measured else None

    def __str__(self) -> str:
        self.stop()
        return f"{self._current:.3f}" if self._measured else "???"

    @staticmethod
    def current_sum(*timers: "Timer") -> float:
        return sum(d for d in (t.current_duration() for t in timers) if d is not None)

    @staticmethod
    def total_sum(*timers: "Timer") -> float:
        return sum(d for d in (t.total_duration() for t in timers) if d is not None)
