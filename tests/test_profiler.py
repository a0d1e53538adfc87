import signal
import sys
import threading
from datetime import datetime, timezone

import pytest

from cpusampler.errors import NotRunningError, RunningError
from cpusampler.frames import MAX_THREAD_NAME, capture_stack
from cpusampler.profiler import Profiler, ProfilerGuardBuilder, start_profiling


@pytest.fixture(autouse=True)
def restore_sigprof():
    original = signal.getsignal(signal.SIGPROF)
    yield
    signal.signal(signal.SIGPROF, original)


@pytest.fixture
def guards():
    started = []
    yield started
    for guard in started:
        guard.stop()


def _stack():
    return capture_stack(sys._getframe())


def _counts(profiler):
    totals = {}
    for entry in profiler.data:
        totals[entry.item] = totals.get(entry.item, 0) + entry.count
    return totals


def test_start_twice_raises_running():
    profiler = Profiler()
    profiler.start()
    with pytest.raises(RunningError):
        profiler.start()
    profiler.stop()
    assert profiler.running is False


def test_stop_when_idle_raises_not_running():
    profiler = Profiler()
    with pytest.raises(NotRunningError):
        profiler.stop()


def test_stop_ignores_sigprof():
    profiler = Profiler()
    profiler.start()
    assert profiler.running is True
    assert signal.getsignal(signal.SIGPROF) != signal.SIG_IGN
    profiler.stop()
    assert profiler.running is False
    assert signal.getsignal(signal.SIGPROF) == signal.SIG_IGN


def test_identical_stacks_are_counted_together():
    profiler = Profiler()
    now = datetime.now(timezone.utc)
    for _ in range(3):
        profiler.sample(_stack(), "worker", 7, now)
    counts = _counts(profiler)
    assert profiler.sample_counter == 3
    assert list(counts.values()) == [3]


def test_different_threads_are_counted_apart():
    profiler = Profiler()
    now = datetime.now(timezone.utc)
    for thread_id in (1, 2):
        profiler.sample(_stack(), "worker", thread_id, now)
    assert sorted(_counts(profiler).values()) == [1, 1]


def test_thread_name_is_clipped():
    profiler = Profiler()
    profiler.sample(_stack(), "a" * 40, 1, datetime.now(timezone.utc))
    (item,) = _counts(profiler)
    assert len(item.thread_name) == MAX_THREAD_NAME


def test_stop_resets_samples():
    profiler = Profiler()
    profiler.start()
    profiler.sample(_stack(), "worker", 1, datetime.now(timezone.utc))
    profiler.stop()
    assert profiler.sample_counter == 0
    assert _counts(profiler) == {}


def test_is_blocklisted_matches_substring():
    profiler = Profiler(blocklist=["libc", "pthread"])
    assert profiler.is_blocklisted("/usr/lib/libc.so.6")
    assert not profiler.is_blocklisted("/srv/app/main.py")


def test_signal_records_current_thread():
    profiler = Profiler()
    profiler.start()
    try:
        signal.raise_signal(signal.SIGPROF)
        (item,) = _counts(profiler)
        assert profiler.sample_counter == 1
        assert item.thread_id == threading.get_ident()
        assert item.thread_name == threading.current_thread().name[:MAX_THREAD_NAME]
        assert item.frames[0].name.endswith("test_signal_records_current_thread")
    finally:
        profiler.stop()


def test_signal_in_blocklisted_file_is_skipped():
    profiler = Profiler(blocklist=[__file__])
    profiler.start()
    try:
        signal.raise_signal(signal.SIGPROF)
        assert profiler.sample_counter == 0
    finally:
        profiler.stop()


def test_signal_skipped_while_lock_held():
    profiler = Profiler()
    profiler.start()
    try:
        with profiler.lock:
            signal.raise_signal(signal.SIGPROF)
        assert profiler.sample_counter == 0
    finally:
        profiler.stop()


def test_builder_returns_new_instances():
    builder = ProfilerGuardBuilder()
    assert builder.frequency(1000) is not builder
    assert builder.blocklist(["libc"]) is not builder


def test_build_applies_blocklist(guards):
    guard = ProfilerGuardBuilder().frequency(1000).blocklist(["libc", "vdso"]).build()
    guards.append(guard)
    assert guard.profiler.blocklist == ("libc", "vdso")
    assert guard.profiler.running


def test_build_twice_raises_running(guards):
    guards.append(start_profiling(100))
    with pytest.raises(RunningError):
        start_profiling(100)


def test_guard_stop_is_idempotent():
    guard = start_profiling(100)
    guard.stop()
    guard.stop()
    assert guard.profiler.running is False


def test_context_manager_stops_profiler():
    with start_profiling(100) as guard:
        assert guard.profiler.running
    assert guard.profiler.running is False


def test_profiler_is_shared_between_guards():
    with start_profiling(100) as first:
        pass
    with start_profiling(100) as second:
        assert second.profiler is first.profiler


def test_invalid_frequency_leaves_profiler_idle():
    with pytest.raises(ValueError):
        start_profiling(0)
    with start_profiling(100) as guard:
        assert guard.profiler.running
    assert guard.profiler.running is False