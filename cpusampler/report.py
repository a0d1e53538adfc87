"""Reports built from the samples a profiler has collected."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from . import proto
from .flamegraph import Options, from_lines
from .frames import Frames, UnresolvedFrames
from .profiler import Profiler
from .timer import ReportTiming

_log = logging.getLogger(__name__)

SAMPLES = "samples"
COUNT = "count"
CPU = "cpu"
NANOSECONDS = "nanoseconds"
THREAD = "thread"

_NANOS_PER_SECOND = 1_000_000_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

FramesPostProcessor = Callable[[Frames], Any]


def _nanos(delta: timedelta) -> int:
    return (delta.days * 86_400 + delta.seconds) * _NANOS_PER_SECOND + delta.microseconds * 1000


@dataclass
class Report:
    """Resolved stacks mapped to how many times each was sampled."""

    data: dict[Frames, int] = field(default_factory=dict)
    timing: ReportTiming = field(default_factory=ReportTiming)

    def folded_lines(self) -> list[str]:
        """One ``thread;root;...;leaf count`` line per stack."""
        lines = []
        for key, value in self.data.items():
            names = [key.thread_name_or_id()]
            for symbols in reversed(key.frames):
                names.extend(str(symbol) for symbol in reversed(symbols))
            lines.append(f"{';'.join(names)} {value}")
        return lines

    def flamegraph(self, writer: Any, options: Options | None = None) -> None:
        """Write an SVG flame graph into ``writer``; nothing is written for an empty report."""
        lines = self.folded_lines()
        if lines:
            from_lines(options if options is not None else Options(), lines, writer)

    def pprof(self) -> proto.Profile:
        """The report in the pprof profile format."""
        dedup: dict[str, None] = {}
        for key in self.data:
            dedup[key.thread_name_or_id()] = None
            for symbols in key.frames:
                for symbol in symbols:
                    dedup[str(symbol)] = None
                    dedup[symbol.sys_name()] = None
                    dedup[symbol.source_file] = None
        for name in (SAMPLES, COUNT, CPU, NANOSECONDS, THREAD):
            dedup[name] = None

        string_table = ["", *dedup]
        strings = {name: index for index, name in enumerate(string_table)}

        frequency = self.timing.frequency
        samples = []
        locations = []
        functions = []
        function_ids: dict[str, int] = {}
        for key, count in self.data.items():
            location_ids = []
            for symbols in key.frames:
                for symbol in symbols:
                    name = str(symbol)
                    known = function_ids.get(name)
                    if known is not None:
                        location_ids.append(known)
                        continue
                    function_id = len(functions) + 1
                    functions.append(
                        proto.Function(
                            id=function_id,
                            name=strings[name],
                            system_name=strings[symbol.sys_name()],
                            filename=strings[symbol.source_file],
                        )
                    )
                    function_ids[name] = function_id
                    locations.append(
                        proto.Location(
                            id=function_id,
                            line=[proto.Line(function_id=function_id, line=symbol.line_number)],
                        )
                    )
                    location_ids.append(function_id)
            samples.append(
                proto.Sample(
                    location_id=location_ids,
                    value=[count, count * _NANOS_PER_SECOND // frequency],
                )
            )

        samples_value = proto.ValueType(type=strings[SAMPLES], unit=strings[COUNT])
        time_value = proto.ValueType(type=strings[CPU], unit=strings[NANOSECONDS])
        since_epoch = self.timing.start_time - _EPOCH
        return proto.Profile(
            sample_type=[samples_value, time_value],
            sample=samples,
            string_table=string_table,
            function=functions,
            location=locations,
            time_nanos=max(_nanos(since_epoch), 0),
            duration_nanos=_nanos(self.timing.duration),
            period_type=proto.ValueType(type=time_value.type, unit=time_value.unit),
            period=_NANOS_PER_SECOND // frequency,
        )

    def __str__(self) -> str:
        return "".join(f"{key} {value}\n" for key, value in self.data.items())


@dataclass
class UnresolvedReport:
    """Unresolved stacks mapped to how many times each was sampled."""

    data: dict[UnresolvedFrames, int] = field(default_factory=dict)
    timing: ReportTiming = field(default_factory=ReportTiming)


class ReportBuilder:
    """Builds reports from the samples held by a profiler."""

    def __init__(self, profiler: Profiler, timing: ReportTiming) -> None:
        self._profiler = profiler
        self._timing = timing
        self._processor: FramesPostProcessor | None = None

    def frames_post_processor(self, processor: FramesPostProcessor) -> ReportBuilder:
        """Apply ``processor`` to every resolved stack before it is counted."""
        self._processor = processor
        return self

    def build_unresolved(self) -> UnresolvedReport:
        """Sum the positive counts per unresolved stack."""
        data: dict[UnresolvedFrames, int] = {}
        with self._profiler.lock:
            for entry in self._profiler.data:
                if entry.count > 0:
                    data[entry.item] = data.get(entry.item, 0) + entry.count
        return UnresolvedReport(data=data, timing=self._timing)

    def build(self) -> Report:
        """Resolve every stack, post-process it and sum the positive counts."""
        data: dict[Frames, int] = {}
        with self._profiler.lock:
            for entry in self._profiler.data:
                if entry.count <= 0:
                    continue
                key = Frames.from_unresolved(entry.item)
                if self._processor is not None:
                    self._processor(key)
                data[key] = data.get(key, 0) + entry.count
        return Report(data=data, timing=self._timing)