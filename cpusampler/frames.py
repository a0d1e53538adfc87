"""Captured call stacks, before and after symbol resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import FrameType
from typing import Hashable, Iterable

MAX_DEPTH = 512
"""The deepest stack that is recorded for one sample."""

MAX_THREAD_NAME = 16
"""The longest thread name, in UTF-8 bytes, that is recorded for one sample."""

SIGNAL_HANDLER_NAMES = frozenset({"perf_signal_handler", "_perf_signal_handler"})
"""Functions that belong to the sampler itself and are dropped from stacks."""

_UNKNOWN = "Unknown"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, eq=False)
class Symbol:
    """A function symbol: its name, and where it lives if that is known."""

    name: str | None = None
    addr: Hashable | None = None
    lineno: int | None = None
    filename: str | None = None

    def sys_name(self) -> str:
        """The name as the runtime reports it, or ``Unknown``."""
        return self.name if self.name is not None else _UNKNOWN

    @property
    def source_file(self) -> str:
        """The file holding the function, or ``Unknown``."""
        return self.filename if self.filename is not None else _UNKNOWN

    @property
    def line_number(self) -> int:
        """The line number, or 0 when it is not known."""
        return self.lineno if self.lineno is not None else 0

    def __str__(self) -> str:
        return self.sys_name()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Symbol):
            return NotImplemented
        return self.sys_name() == other.sys_name()

    def __hash__(self) -> int:
        return hash(self.sys_name())


@dataclass(frozen=True)
class Frame:
    """One unresolved stack frame: the running function and the current line."""

    name: str
    filename: str
    lineno: int
    first_lineno: int

    @classmethod
    def from_frame(cls, frame: FrameType) -> Frame:
        """Record the code location of a live interpreter frame."""
        code = frame.f_code
        return cls(
            name=getattr(code, "co_qualname", code.co_name),
            filename=code.co_filename,
            lineno=frame.f_lineno if frame.f_lineno is not None else 0,
            first_lineno=code.co_firstlineno,
        )

    def resolve_symbol(self) -> list[Symbol]:
        """The symbols found at this frame, innermost first."""
        return [
            Symbol(
                name=self.name,
                addr=self.symbol_address(),
                lineno=self.lineno,
                filename=self.filename,
            )
        ]

    def symbol_address(self) -> tuple[str, int, str]:
        """An identity of the enclosing function, shared by all its lines."""
        return (self.filename, self.first_lineno, self.name)


def capture_stack(frame: FrameType | None, max_depth: int = MAX_DEPTH) -> tuple[Frame, ...]:
    """Walk outwards from ``frame``, leaf first, keeping at most ``max_depth`` frames."""
    stack: list[Frame] = []
    while frame is not None and len(stack) < max_depth:
        stack.append(Frame.from_frame(frame))
        frame = frame.f_back
    return tuple(stack)


def _clip_thread_name(name: str) -> str:
    raw = name.encode("utf-8")[:MAX_THREAD_NAME]
    return raw.decode("utf-8", errors="replace")


@dataclass(eq=False)
class UnresolvedFrames:
    """A sampled stack whose frames have not been turned into symbols yet.

    Two samples are equal when they come from the same thread and their
    frames are in the same functions; names and timestamps do not count.
    """

    frames: tuple[Frame, ...] = ()
    thread_name: str = ""
    thread_id: int = 0
    sample_timestamp: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        self.frames = tuple(self.frames)
        self.thread_name = _clip_thread_name(self.thread_name)

    def _addresses(self) -> tuple[Hashable, ...]:
        return tuple(frame.symbol_address() for frame in self.frames)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnresolvedFrames):
            return NotImplemented
        return self.thread_id == other.thread_id and self._addresses() == other._addresses()

    def __hash__(self) -> int:
        return hash((self._addresses(), self.thread_id))

    def __repr__(self) -> str:
        return repr(list(self.frames))


def _is_signal_handler(symbols: Iterable[Symbol]) -> bool:
    return any(str(symbol) in SIGNAL_HANDLER_NAMES for symbol in symbols)


@dataclass(unsafe_hash=True)
class Frames:
    """A resolved stack: for each frame, the symbols found there."""

    frames: tuple[tuple[Symbol, ...], ...] = ()
    thread_name: str = ""
    thread_id: int = 0
    sample_timestamp: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        self.frames = tuple(tuple(symbols) for symbols in self.frames)

    def thread_name_or_id(self) -> str:
        """The thread name, or its id when the name is empty."""
        return self.thread_name if self.thread_name else str(self.thread_id)

    @classmethod
    def from_unresolved(cls, unresolved: UnresolvedFrames) -> Frames:
        """Resolve every frame, dropping the sampler's own handler and its caller frame."""
        resolved: list[tuple[Symbol, ...]] = []
        frames = iter(unresolved.frames)
        for frame in frames:
            symbols = tuple(frame.resolve_symbol())
            if _is_signal_handler(symbols):
                next(frames, None)
                continue
            if symbols:
                resolved.append(symbols)
        return cls(
            frames=tuple(resolved),
            thread_name=unresolved.thread_name,
            thread_id=unresolved.thread_id,
            sample_timestamp=unresolved.sample_timestamp,
        )

    def __str__(self) -> str:
        parts = [
            "FRAME: " + "".join(f"{symbol} -> " for symbol in symbols)
            for symbols in self.frames
        ]
        thread = self.thread_name if self.thread_name else f"ThreadId({self.thread_id})"
        return "".join(parts) + "THREAD: " + thread