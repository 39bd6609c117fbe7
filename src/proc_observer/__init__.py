"""proc-observer - run an external process and observe it as events.

Environment variables:
    PROC_OBSERVER_LOG_DEBUG: debug logging to a temp file (default false)
    PROC_OBSERVER_ENCODING: decoding for captured lines (default utf-8)
    PROC_OBSERVER_DRAIN_TIMEOUT: bounded wait for blocked readers after exit (default: until end-of-stream)
    PROC_OBSERVER_NEW_SESSION: start children in a new session (default true)

Usage:
    proc-observer -- git status
"""

__version__ = "0.1.0"

from .runtime import (
    Channel,
    ExitSource,
    ProcessConfiguration,
    ProcessResult,
    ProcessRunner,
    ProcessState,
    ProcessStateError,
    run_process,
)

__all__ = [
    "__version__",
    "Channel",
    "ExitSource",
    "ProcessConfiguration",
    "ProcessResult",
    "ProcessRunner",
    "ProcessState",
    "ProcessStateError",
    "run_process",
]
