import inspect
import pickle
from datetime import datetime, timezone

import pytest

from cpusampler.frames import (
    MAX_THREAD_NAME,
    Frame,
    Frames,
    Symbol,
    UnresolvedFrames,
    capture_stack,
)


def _inner(depth):
    return capture_stack(inspect.currentframe(), depth)


def _outer(depth):
    return _inner(depth)


def _frame(name, line=1, first=1, filename="app.py"):
    return Frame(name=name, filename=filename, lineno=line, first_lineno=first)


def test_symbol_defaults_to_unknown():
    symbol = Symbol()
    assert symbol.sys_name() == "Unknown"
    assert str(symbol) == "Unknown"
    assert symbol.source_file == "Unknown"
    assert symbol.line_number == 0


def test_symbol_equality_uses_name_only():
    first = Symbol(name="work", lineno=3, filename="a.py")
    second = Symbol(name="work", lineno=9, filename="b.py")
    assert first == second
    assert hash(first) == hash(second)
    assert Symbol(name="other") != first


def test_capture_stack_is_leaf_first():
    stack = _outer(10)
    assert stack[0].name == "_inner"
    assert stack[1].name == "_outer"
    assert stack[0].filename == __file__


def test_capture_stack_respects_depth():
    assert len(_outer(1)) == 1
    assert _outer(0) == ()


def test_symbol_address_is_shared_within_function():
    first = _frame("f", line=10, first=5)
    second = _frame("f", line=12, first=5)
    assert first.symbol_address() == second.symbol_address()
    assert first.symbol_address() != _frame("g", line=10, first=5).symbol_address()


def test_resolve_symbol_carries_location():
    symbols = _frame("f", line=10, first=5).resolve_symbol()
    assert [s.sys_name() for s in symbols] == ["f"]
    assert symbols[0].line_number == 10
    assert symbols[0].source_file == "app.py"


def test_unresolved_equality_ignores_lines_names_and_time():
    early = datetime(2020, 1, 1, tzinfo=timezone.utc)
    a = UnresolvedFrames((_frame("f", line=1),), "one", 7, early)
    b = UnresolvedFrames((_frame("f", line=2),), "two", 7)
    assert a == b
    assert hash(a) == hash(b)
    assert a != UnresolvedFrames((_frame("f"),), "one", 8, early)
    assert a != UnresolvedFrames((_frame("f"), _frame("g")), "one", 7, early)


def test_unresolved_thread_name_is_clipped():
    unresolved = UnresolvedFrames((), "x" * 40, 1)
    assert unresolved.thread_name == "x" * MAX_THREAD_NAME


def test_unresolved_survives_pickling():
    unresolved = UnresolvedFrames((_frame("f"),), "worker", 3)
    restored = pickle.loads(pickle.dumps(unresolved))
    assert restored == unresolved
    assert restored.thread_name == "worker"


def test_from_unresolved_resolves_every_frame():
    stamp = datetime(2021, 5, 6, tzinfo=timezone.utc)
    unresolved = UnresolvedFrames((_frame("leaf"), _frame("root")), "main", 4, stamp)
    frames = Frames.from_unresolved(unresolved)
    assert [[str(s) for s in f] for f in frames.frames] == [["leaf"], ["root"]]
    assert frames.thread_name == "main"
    assert frames.thread_id == 4
    assert frames.sample_timestamp == stamp


def test_from_unresolved_drops_handler_and_next_frame():
    unresolved = UnresolvedFrames(
        (_frame("perf_signal_handler"), _frame("trampoline"), _frame("work")), "", 1
    )
    frames = Frames.from_unresolved(unresolved)
    assert [[str(s) for s in f] for f in frames.frames] == [["work"]]


def test_thread_name_or_id():
    assert Frames(thread_name="worker", thread_id=5).thread_name_or_id() == "worker"
    assert Frames(thread_name="", thread_id=5).thread_name_or_id() == "5"


def test_str_lists_frames_and_thread():
    frames = Frames(frames=[[Symbol(name="a")], [Symbol(name="b")]], thread_name="main")
    assert str(frames) == "FRAME: a -> FRAME: b -> THREAD: main"
    anonymous = Frames(frames=[[Symbol(name="a")]], thread_id=9)
    assert str(anonymous) == "FRAME: a -> THREAD: ThreadId(9)"


def test_frames_hash_follows_mutation():
    stamp = datetime(2022, 1, 1, tzinfo=timezone.utc)
    a = Frames(frames=[[Symbol(name="a")]], thread_name="x", sample_timestamp=stamp)
    b = Frames(frames=[[Symbol(name="a")]], thread_name="y", sample_timestamp=stamp)
    assert a != b
    b.thread_name = "x"
    assert a == b
    assert len({a, b}) == 1


@pytest.mark.parametrize("name", ["perf_signal_handler", "_perf_signal_handler"])
def test_both_handler_spellings_are_dropped(name):
    unresolved = UnresolvedFrames((_frame(name),), "", 1)
    assert Frames.from_unresolved(unresolved).frames == ()