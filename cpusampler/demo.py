"""A CPU-bound prime counting workload profiled with the sampler."""

from __future__ import annotations

import argparse
import threading
import time
from bisect import bisect_left
from pathlib import Path
from typing import Iterable, Sequence

from .frames import Frames
from .profiler import ProfilerGuardBuilder
from .report import Report

TABLE_SIZE = 10_000
"""The prime table covers every number below this bound."""

WORKER_RANGE = 50_000
"""Worker threads count the primes below this bound over and over."""

_WORKER_NAMES = ("THREAD_ONE", "THREAD_TWO")


def prepare_prime_numbers(limit: int = TABLE_SIZE) -> list[int]:
    """All primes below ``limit``, in ascending order, found with a sieve."""
    if limit < 2:
        return []
    table = [True] * limit
    table[0] = table[1] = False
    for number in range(2, limit):
        if table[number]:
            for multiple in range(number * 2, limit, number):
                table[multiple] = False
    return [number for number, is_prime in enumerate(table) if is_prime]


def is_prime_number(value: int, prime_numbers: Sequence[int]) -> bool:
    """Look ``value`` up in the table when it is small, else trial-divide by the table."""
    if value < TABLE_SIZE:
        index = bisect_left(prime_numbers, value)
        return index < len(prime_numbers) and prime_numbers[index] == value
    return all(value % prime != 0 for prime in prime_numbers)


def _count_primes(values: Iterable[int], prime_numbers: Sequence[int]) -> int:
    return sum(1 for value in values if is_prime_number(value, prime_numbers))


def _worker(prime_numbers: Sequence[int], stop: threading.Event) -> None:
    while not stop.is_set():
        for value in range(2, WORKER_RANGE):
            if stop.is_set():
                return
            is_prime_number(value, prime_numbers)


def _positive(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cpusampler-demo",
        description="Count primes while the sampling profiler records the stacks.",
    )
    parser.add_argument("--frequency", type=_positive, default=100,
                        help="samples per second (default: 100)")
    parser.add_argument("--limit", type=int, default=5_000_000,
                        help="count the primes in [2, LIMIT) on the main thread")
    parser.add_argument("--format", choices=("flamegraph", "pprof", "text"),
                        default="flamegraph", help="what to produce from the report")
    parser.add_argument("--output", type=Path, default=None,
                        help="output file (default: flamegraph.svg or profile.pb)")
    parser.add_argument("--threads", type=int, default=0,
                        help="background worker threads running meanwhile")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="seconds to keep sampling after the count is done")
    parser.add_argument("--thread-name", default=None,
                        help="rename the thread of every stack in the report")
    parser.add_argument("--blocklist", nargs="*", default=[],
                        help="ignore samples whose leaf frame's file contains any of these")
    return parser


def _start_workers(count: int, prime_numbers: Sequence[int], stop: threading.Event) -> list[threading.Thread]:
    workers = []
    for number in range(count):
        name = _WORKER_NAMES[number] if number < len(_WORKER_NAMES) else None
        thread = threading.Thread(target=_worker, args=(prime_numbers, stop), name=name, daemon=True)
        thread.start()
        workers.append(thread)
    return workers


def _write_output(report: Report, fmt: str, output: Path | None) -> None:
    if fmt == "flamegraph":
        path = output if output is not None else Path("flamegraph.svg")
        with path.open("w", encoding="utf-8") as handle:
            report.flamegraph(handle)
        print(f"report: {report}")
    elif fmt == "pprof":
        path = output if output is not None else Path("profile.pb")
        path.write_bytes(report.pprof().encode())
        print(f"report: {report}")
    else:
        print(report, end="")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the workload under the profiler and write its report."""
    args = _parser().parse_args(argv)
    prime_numbers = prepare_prime_numbers(TABLE_SIZE)

    builder = ProfilerGuardBuilder().frequency(args.frequency)
    if args.blocklist:
        builder = builder.blocklist(args.blocklist)

    stop = threading.Event()
    with builder.build() as guard:
        workers = _start_workers(max(args.threads, 0), prime_numbers, stop)
        try:
            found = _count_primes(range(2, max(args.limit, 2)), prime_numbers)
            print(f"Prime numbers: {found}")
            if args.duration > 0:
                time.sleep(args.duration)

            builder_report = guard.report()
            if args.thread_name is not None:
                new_name = args.thread_name

                def rename(frames: Frames) -> None:
                    frames.thread_name = new_name

                builder_report.frames_post_processor(rename)
            report = builder_report.build()
        finally:
            stop.set()
            for worker in workers:
                worker.join()

    _write_output(report, args.format, args.output)
    return 0