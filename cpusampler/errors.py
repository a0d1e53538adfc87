"""Exceptions raised by the profiler."""

from __future__ import annotations


class ProfilerError(Exception):
    """Base class for every profiler failure."""

    default_message = "profiler error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class CreatingError(ProfilerError):
    """The shared profiler could not be created."""

    default_message = "create profiler error"


class RunningError(ProfilerError):
    """The profiler was asked to start while it was already running."""

    default_message = "start running cpu profiler error"


class NotRunningError(ProfilerError):
    """The profiler was asked to stop while it was not running."""

    default_message = "stop running cpu profiler error"