"""Runtime module for single-process execution with observer events.

This module launches one external process per runner, streams its
stdout/stderr lines to subscribers and notifies them exactly once when
the process exits or fails to start.
"""

from __future__ import annotations

from .collector import ProcessResult, run_process, run_process_async
from .errors import LaunchFailure, ProcessRunnerError, ProcessStateError
from .observers import Channel, ObserverRegistry, Subscription
from .process_runner import (
    ExitSource,
    ProcessConfiguration,
    ProcessRunner,
    ProcessState,
)

__all__ = [
    "Channel",
    "ExitSource",
    "LaunchFailure",
    "ObserverRegistry",
    "ProcessConfiguration",
    "ProcessResult",
    "ProcessRunner",
    "ProcessRunnerError",
    "ProcessState",
    "ProcessStateError",
    "Subscription",
    "run_process",
    "run_process_async",
]
