"""The sampling profiler, its shared instance and the guard that controls it."""

from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime, timezone
from types import FrameType
from typing import Iterable

from .collector import Collector
from .errors import CreatingError, NotRunningError, ProfilerError, RunningError
from .frames import MAX_DEPTH, Frame, UnresolvedFrames, capture_stack
from .timer import ReportTiming, Timer

_log = logging.getLogger(__name__)

DEFAULT_FREQUENCY = 99
"""Samples per second when no frequency is given."""


class Profiler:
    """Collects stack samples delivered by the SIGPROF handler.

    ``lock`` guards the collected data; the signal handler only samples
    when it can take the lock without waiting.
    """

    def __init__(self, blocklist: Iterable[str] = ()) -> None:
        self.lock = threading.Lock()
        self.blocklist: tuple[str, ...] = tuple(blocklist)
        self._data: Collector[UnresolvedFrames] = Collector()
        self._sample_counter = 0
        self._running = False

    @property
    def data(self) -> Collector[UnresolvedFrames]:
        """The samples collected since the profiler was last started."""
        return self._data

    @property
    def sample_counter(self) -> int:
        """How many samples were taken since the profiler was last started."""
        return self._sample_counter

    @property
    def running(self) -> bool:
        """Whether the signal handler is installed."""
        return self._running

    def start(self) -> None:
        """Install the signal handler; raise :class:`RunningError` if already running."""
        _log.info("starting cpu profiler")
        if self._running:
            raise RunningError()
        self._register_signal_handler()
        self._running = True

    def stop(self) -> None:
        """Ignore SIGPROF and drop collected data; raise :class:`NotRunningError` if idle."""
        _log.info("stopping cpu profiler")
        if not self._running:
            raise NotRunningError()
        self._unregister_signal_handler()
        self._reset()

    def _reset(self) -> None:
        previous = self._data
        self._data = Collector()
        previous.close()
        self._sample_counter = 0
        self._running = False

    def is_blocklisted(self, filename: str) -> bool:
        """Whether ``filename`` belongs to one of the blocked libraries."""
        return any(blocked in filename for blocked in self.blocklist)

    def sample(
        self,
        frames: Iterable[Frame],
        thread_name: str,
        thread_id: int,
        sample_timestamp: datetime,
    ) -> None:
        """Record one stack sample; a failure to store it is ignored."""
        unresolved = UnresolvedFrames(
            frames=tuple(frames),
            thread_name=thread_name,
            thread_id=thread_id,
            sample_timestamp=sample_timestamp,
        )
        self._sample_counter += 1
        try:
            self._data.add(unresolved, 1)
        except OSError:
            pass

    def _register_signal_handler(self) -> None:
        sigprof = getattr(signal, "SIGPROF", None)
        if sigprof is None:
            raise ProfilerError("SIGPROF is not available on this platform")
        try:
            signal.signal(sigprof, self._on_signal)
        except (ValueError, OSError) as exc:
            raise ProfilerError(str(exc)) from exc

    def _unregister_signal_handler(self) -> None:
        sigprof = getattr(signal, "SIGPROF", None)
        if sigprof is None:
            raise ProfilerError("SIGPROF is not available on this platform")
        try:
            signal.signal(sigprof, signal.SIG_IGN)
        except (ValueError, OSError) as exc:
            raise ProfilerError(str(exc)) from exc

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        if not self.lock.acquire(blocking=False):
            return
        try:
            if frame is not None and self.is_blocklisted(frame.f_code.co_filename):
                return
            timestamp = datetime.now(timezone.utc)
            stack = capture_stack(frame, MAX_DEPTH)
            self.sample(
                stack,
                threading.current_thread().name,
                threading.get_ident(),
                timestamp,
            )
        finally:
            self.lock.release()


_shared_lock = threading.Lock()
_shared_profiler: Profiler | None = None
_shared_error: OSError | None = None


def _shared() -> Profiler:
    global _shared_profiler, _shared_error
    with _shared_lock:
        if _shared_profiler is None and _shared_error is None:
            try:
                _shared_profiler = Profiler()
            except OSError as exc:
                _shared_error = exc
        if _shared_profiler is None:
            _log.error("Error in creating profiler: %s", _shared_error)
            raise CreatingError() from _shared_error
        return _shared_profiler


class ProfilerGuardBuilder:
    """Configures and starts the shared profiler."""

    def __init__(
        self,
        frequency: int = DEFAULT_FREQUENCY,
        blocklist: Iterable[str] = (),
    ) -> None:
        self._frequency = frequency
        self._blocklist = tuple(blocklist)

    def frequency(self, frequency: int) -> ProfilerGuardBuilder:
        """A builder sampling ``frequency`` times a second."""
        return ProfilerGuardBuilder(frequency, self._blocklist)

    def blocklist(self, blocklist: Iterable[str]) -> ProfilerGuardBuilder:
        """A builder ignoring samples whose leaf frame's file contains any of ``blocklist``."""
        return ProfilerGuardBuilder(self._frequency, blocklist)

    def build(self) -> ProfilerGuard:
        """Start the shared profiler and its timer."""
        if self._frequency < 1:
            raise ValueError("frequency must be a positive number of samples per second")
        profiler = _shared()
        with profiler.lock:
            profiler.blocklist = self._blocklist
            profiler.start()
        try:
            timer = Timer(self._frequency)
        except BaseException:
            with profiler.lock:
                profiler.stop()
            raise
        return ProfilerGuard(profiler, timer)


class ProfilerGuard:
    """Keeps the profiler running until it is stopped or its ``with`` block ends."""

    def __init__(self, profiler: Profiler, timer: Timer | None) -> None:
        self._profiler = profiler
        self._timer = timer
        self._stopped = False

    @property
    def profiler(self) -> Profiler:
        """The profiler this guard controls."""
        return self._profiler

    def report(self):
        """A report builder over the samples collected so far."""
        from .report import ReportBuilder

        timing = self._timer.timing() if self._timer is not None else ReportTiming()
        return ReportBuilder(self._profiler, timing)

    def stop(self) -> None:
        """Disarm the timer and stop the profiler; later calls do nothing."""
        if self._stopped:
            return
        self._stopped = True
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
        with self._profiler.lock:
            try:
                self._profiler.stop()
            except ProfilerError as exc:
                _log.error("error while stopping profiler %s", exc)

    def __enter__(self) -> ProfilerGuard:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def start_profiling(frequency: int) -> ProfilerGuard:
    """Start profiling with the given sample frequency."""
    return ProfilerGuardBuilder().frequency(frequency).build()