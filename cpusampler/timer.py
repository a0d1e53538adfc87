"""The profiling interval timer and the timing data it reports."""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ReportTiming:
    """Sampling frequency, collection start time and collection duration."""

    frequency: int = 1
    start_time: datetime = _EPOCH
    duration: timedelta = field(default_factory=timedelta)


def _interval_seconds(frequency: int) -> float:
    interval_us = 1_000_000 // frequency
    return interval_us / 1_000_000


def _arm(seconds: float) -> None:
    setitimer = getattr(signal, "setitimer", None)
    if setitimer is not None:
        setitimer(signal.ITIMER_PROF, seconds, seconds)


class Timer:
    """Arms the CPU-time interval timer so SIGPROF fires ``frequency`` times a second."""

    def __init__(self, frequency: int) -> None:
        if frequency < 1:
            raise ValueError("frequency must be a positive number of samples per second")
        self.frequency = frequency
        _arm(_interval_seconds(frequency))
        self.start_time = datetime.now(timezone.utc)
        self.start_instant = time.monotonic()
        self._running = True

    @property
    def running(self) -> bool:
        """Whether the interval timer is still armed."""
        return self._running

    def timing(self) -> ReportTiming:
        """Frequency, start time and the time elapsed since the timer was created."""
        return ReportTiming(
            frequency=self.frequency,
            start_time=self.start_time,
            duration=timedelta(seconds=time.monotonic() - self.start_instant),
        )

    def stop(self) -> None:
        """Disarm the interval timer; stopping twice is harmless."""
        if self._running:
            _arm(0.0)
            self._running = False

    def __enter__(self) -> Timer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()