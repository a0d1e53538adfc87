"""Sampling CPU profiler with text, flame graph and pprof reports."""

__version__ = "0.1.0"

__all__ = [
    "collector",
    "demo",
    "errors",
    "flamegraph",
    "frames",
    "profiler",
    "proto",
    "report",
    "timer",
]