"""Process runner with line-streaming observers and exit notification.

proc-observer runtime module v0.1.0

This module provides:
- Non-blocking launch of one external process per runner
- Line-by-line stdout/stderr delivery from background reader threads
- A single exit notification, guarded against the exit-watcher and
  error-reader racing each other
- Waits that drain buffered output before returning
- Idempotent close and process-group kill

Key design points:
- POSIX: start_new_session=True so kill() can signal the whole group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Launch failures are reported through observers, never raised
- Ordering is guaranteed within a channel, not across channels
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import IO, Any

import anyio

from ..config import get_config
from .errors import LaunchFailure, ProcessStateError
from .observers import Channel, ObserverRegistry, Subscription

__all__ = [
    "ExitSource",
    "ProcessConfiguration",
    "ProcessRunner",
    "ProcessState",
]

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# The exit watcher re-polls at this interval; Popen.wait(timeout) sleeps
# in short steps and does not hold the waitpid lock, so poll() from the
# reader threads stays usable.
_WATCH_INTERVAL = 1.0

# Granularity of the bounded drain while a reader is busy in a callback
_DRAIN_POLL = 0.05

# drain_timeout argument not given: use the configured value
_CONFIGURED = object()


def _silent_logger() -> logging.Logger:
    # Not registered with the logging manager, so nothing global is touched.
    log = logging.Logger("proc_observer.silent")
    log.addHandler(logging.NullHandler())
    log.propagate = False
    return log


NULL_LOGGER = _silent_logger()


class ProcessState(str, Enum):
    """Lifecycle state of a runner's process."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED_TO_START = "failed_to_start"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessState.FINISHED, ProcessState.FAILED_TO_START)


_TRANSITIONS: dict[ProcessState, frozenset[ProcessState]] = {
    ProcessState.NOT_STARTED: frozenset({ProcessState.RUNNING, ProcessState.FAILED_TO_START}),
    ProcessState.RUNNING: frozenset({ProcessState.FINISHED}),
    ProcessState.FINISHED: frozenset(),
    ProcessState.FAILED_TO_START: frozenset(),
}


class ExitSource(str, Enum):
    """Which path delivered the exit notification."""

    EXIT_WATCHER = "exit_watcher"
    ERROR_READER = "error_reader"
    LAUNCH_FAILURE = "launch_failure"


@dataclass(frozen=True)
class ProcessConfiguration:
    """What to launch and how.

    Attributes:
        command: Executable path or name looked up on PATH
        arguments: Arguments after the command
        working_directory: Working directory (None = inherit)
        environment: Variables to set for the child
        inherit_environment: Merge ``environment`` onto the parent's
            environment (True) or use it alone (False)
        capture_stdout: Stream stdout lines to output observers
        capture_stderr: Stream stderr lines to error observers
        stdin_bytes: Optional bytes written to stdin, which is then closed
        encoding: Decoding for captured lines (None = configured default)
        new_session: Start in a new session/process group
            (None = configured default)
    """

    command: str
    arguments: Sequence[str] = ()
    working_directory: Path | None = None
    environment: Mapping[str, str] | None = None
    inherit_environment: bool = True
    capture_stdout: bool = True
    capture_stderr: bool = True
    stdin_bytes: bytes | None = None
    encoding: str | None = None
    new_session: bool | None = None

    def __post_init__(self) -> None:
        command = os.fspath(self.command) if self.command is not None else ""
        if not command.strip():
            raise ValueError("ProcessConfiguration.command must be a non-empty string")
        object.__setattr__(self, "command", command)
        object.__setattr__(self, "arguments", tuple(str(arg) for arg in self.arguments))
        if self.working_directory is not None:
            object.__setattr__(self, "working_directory", Path(self.working_directory))
        if self.environment is not None:
            object.__setattr__(
                self,
                "environment",
                MappingProxyType({str(k): str(v) for k, v in self.environment.items()}),
            )

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]

    def resolved_environment(self) -> dict[str, str]:
        """Environment the child will actually see."""
        env = dict(os.environ) if self.inherit_environment else {}
        if self.environment:
            env.update(self.environment)
        return env


class _StreamReader:
    """A captured pipe and the thread pumping it."""

    def __init__(self, stream: IO[bytes], channel: Channel) -> None:
        self.stream = stream
        self.channel = channel
        self.thread: threading.Thread | None = None
        # True while waiting on the pipe, False while handling a line
        self.blocked = False


def _strip_newline(line: str) -> str:
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


class ProcessRunner:
    """Runs one external process and reports its lines and exit to observers.

    Subscribe before calling ``run()``: lines and the exit notification
    produced before a callback is registered are not replayed.

    Callbacks are invoked on the reader threads (one for stdout, one for
    stderr) and on the exit path, so they must tolerate being called
    concurrently from different threads. The exit notification fires at
    most once; exit observers receive the runner.

    Example:
        runner = ProcessRunner(ProcessConfiguration("git", ["status"]))
        runner.on_output(lambda line: print("out", line))
        runner.on_error(lambda line: print("err", line))
        runner.on_exit(lambda r: print("exit", r.exit_code))

        runner.run()
        runner.wait_for_exit()
        runner.close()
    """

    def __init__(
        self,
        configuration: ProcessConfiguration,
        *,
        logger: logging.Logger | None = None,
        drain_timeout: Any = _CONFIGURED,
    ) -> None:
        """Create a runner.

        Args:
            configuration: Process configuration
            logger: Logger for trace output (default: silent)
            drain_timeout: Seconds the exit path waits for a reader still
                blocked on its pipe, or None to wait until end-of-stream.
                Readers busy delivering a line are always waited for.
                Defaults to the configured value (unbounded unless set).
        """
        config = get_config()
        self.configuration = configuration
        self._log = logger if logger is not None else NULL_LOGGER
        self._encoding = configuration.encoding or config.encoding
        self._new_session = (
            configuration.new_session if configuration.new_session is not None else config.new_session
        )
        self._drain_timeout: float | None = (
            config.drain_timeout if drain_timeout is _CONFIGURED else drain_timeout
        )

        self._observers = ObserverRegistry(self._log)
        self._lock = threading.Lock()
        self._state = ProcessState.NOT_STARTED
        self._run_called = False
        self._process: subprocess.Popen[bytes] | None = None
        self._readers: list[_StreamReader] = []
        self._launch_failure: LaunchFailure | None = None
        self._closed = False

        self._exit_notified = False
        self._exit_source: ExitSource | None = None
        self._notifying_thread: threading.Thread | None = None
        # Set once the process is known to be gone
        self._exited = threading.Event()
        # Set once the exit notification has been delivered
        self._drained = threading.Event()

    # ------------------------------------------------------------------
    # Observer registration
    # ------------------------------------------------------------------

    @property
    def observers(self) -> ObserverRegistry:
        return self._observers

    def on_output(self, callback: Callable[[str], Any]) -> Subscription:
        """Subscribe to stdout lines (newline stripped)."""
        return self._observers.subscribe(Channel.OUTPUT, callback)

    def on_error(self, callback: Callable[[str], Any]) -> Subscription:
        """Subscribe to stderr lines and launch diagnostics."""
        return self._observers.subscribe(Channel.ERROR, callback)

    def on_exit(self, callback: Callable[["ProcessRunner"], Any]) -> Subscription:
        """Subscribe to the exit notification."""
        return self._observers.subscribe(Channel.EXIT, callback)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def has_exited(self) -> bool:
        """True once the process finished or failed to start."""
        with self._lock:
            state = self._state
            process = self._process
        if state is ProcessState.RUNNING and process is not None and process.poll() is not None:
            self._mark_finished()
            return True
        return state.is_terminal

    @property
    def pid(self) -> int:
        """OS process id. Raises ProcessStateError if never started."""
        process = self._process
        if process is None:
            raise ProcessStateError("read pid", self._state.value)
        return process.pid

    @property
    def exit_code(self) -> int | None:
        """Return code once finished; negative for signals on POSIX."""
        if self._state is not ProcessState.FINISHED or self._process is None:
            return None
        return self._process.returncode

    @property
    def exit_source(self) -> ExitSource | None:
        return self._exit_source

    @property
    def launch_failure(self) -> LaunchFailure | None:
        return self._launch_failure

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Start the process and return immediately.

        On launch failure the runner moves to FAILED_TO_START, emits one
        diagnostic error line and then the exit notification.

        Raises:
            ProcessStateError: If ``run()`` was already called
        """
        with self._lock:
            if self._run_called:
                raise ProcessStateError("run", self._state.value)
            self._run_called = True

        cfg = self.configuration
        environment = cfg.resolved_environment()
        self._log.debug(f"Run: argv={cfg.argv} cwd={cfg.working_directory}")

        # ValueError covers arguments Popen rejects before exec, such as an
        # embedded null byte or an '=' in an environment variable name.
        try:
            process = subprocess.Popen(
                cfg.argv,
                stdin=subprocess.PIPE if cfg.stdin_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE if cfg.capture_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE if cfg.capture_stderr else subprocess.DEVNULL,
                cwd=cfg.working_directory,
                env=environment,
                **self._build_subprocess_kwargs(),
            )
        except (OSError, ValueError) as exc:
            self._fail_launch(LaunchFailure.from_exception(exc, cfg.command, environment))
            return

        with self._lock:
            self._process = process
            self._transition(ProcessState.RUNNING)

        self._log.debug(f"Started subprocess pid={process.pid} argv={cfg.argv[0]}")

        if cfg.stdin_bytes is not None and process.stdin is not None:
            self._new_thread(
                f"stdin-{process.pid}", self._write_stdin, process.stdin, cfg.stdin_bytes
            ).start()

        readers = []
        if process.stdout is not None:
            readers.append(_StreamReader(process.stdout, Channel.OUTPUT))
        if process.stderr is not None:
            readers.append(_StreamReader(process.stderr, Channel.ERROR))
        for reader in readers:
            reader.thread = self._new_thread(
                f"{reader.channel.value}-{process.pid}", self._pump, reader
            )

        # Every reader must be visible to _finish before any of them runs
        self._readers = readers
        for reader in readers:
            reader.thread.start()

        self._new_thread(f"exit-{process.pid}", self._watch_exit, process).start()

    def wait_for_exit(self, timeout: float | None = None) -> bool:
        """Block until the process exits.

        With a timeout, returns False if the process is still running when
        it elapses. When the process did exit, this additionally waits
        for all buffered output and the exit notification to be delivered,
        so no line events arrive after it returns True.

        Raises:
            ProcessStateError: If ``run()`` was never called
        """
        if not self._run_called:
            raise ProcessStateError("wait for exit", self._state.value)

        self._log.debug(f"WaitForExit - timeout: {timeout}")
        if not self._exited.wait(timeout):
            return False

        # Called from an exit observer: the notification is in progress on
        # this very thread and waiting for it would never return.
        if self._notifying_thread is not threading.current_thread():
            self._drained.wait()
        return True

    async def wait_for_exit_async(self, timeout: float | None = None) -> bool:
        """``wait_for_exit`` run in a worker thread for async callers."""
        return await anyio.to_thread.run_sync(
            self.wait_for_exit, timeout, abandon_on_cancel=True
        )

    def kill(self) -> None:
        """Forcibly terminate the process if still running.

        Does not wait; follow with ``wait_for_exit()`` for confirmation.
        """
        with self._lock:
            process = self._process
            state = self._state

        if process is None or state is not ProcessState.RUNNING or process.poll() is not None:
            self._log.debug(f"Kill ignored, process is {state.value}")
            return

        pid = process.pid
        try:
            if not IS_WINDOWS and self._new_session:
                self._posix_kill(process)
            else:
                process.kill()
                self._log.debug(f"Called kill() on pid={pid}")
        except ProcessLookupError:
            self._log.debug(f"Subprocess already exited pid={pid}")

    def close(self) -> None:
        """Release process resources. Idempotent.

        Does not stop a running process. Pipes still being read are
        closed by their reader threads at end-of-stream, so closing never
        races an active read: closing a buffered pipe from another thread
        would block on the reader's buffer lock, and closing the raw
        descriptor would free a number the blocked read still uses.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            process = self._process

        self._log.debug("Close")
        if process is not None and process.returncode is None:
            # Reap if it already exited; no-op otherwise
            process.poll()

    def __enter__(self) -> "ProcessRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        pid = self._process.pid if self._process is not None else None
        return (
            f"ProcessRunner(command={self.configuration.command!r}, "
            f"state={self._state.value}, pid={pid})"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific Popen kwargs."""
        kwargs: dict[str, Any] = {}
        if not self._new_session:
            return kwargs

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        return kwargs

    def _new_thread(self, name: str, target: Callable[..., None], *args: Any) -> threading.Thread:
        return threading.Thread(
            target=target,
            args=args,
            name=f"proc-observer-{name}",
            daemon=True,
        )

    def _transition(self, new_state: ProcessState) -> None:
        """Move to ``new_state``. Caller holds ``self._lock``."""
        if new_state not in _TRANSITIONS[self._state]:
            raise ProcessStateError(f"move to {new_state.value}", self._state.value)
        self._state = new_state

    def _fail_launch(self, failure: LaunchFailure) -> None:
        with self._lock:
            self._launch_failure = failure
            self._transition(ProcessState.FAILED_TO_START)
        self._exited.set()

        self._log.debug(f"Launch failed: {failure.reason} (errno={failure.errno})")
        self._observers.dispatch(Channel.ERROR, failure.format())
        self._notify_exit(ExitSource.LAUNCH_FAILURE)

    def _mark_finished(self) -> None:
        with self._lock:
            if self._state is ProcessState.RUNNING:
                self._transition(ProcessState.FINISHED)
        self._exited.set()

    def _process_exited(self) -> bool:
        process = self._process
        return process is not None and process.poll() is not None

    def _decode(self, raw: bytes) -> str:
        return _strip_newline(raw.decode(self._encoding, errors="replace"))

    def _write_stdin(self, stream: IO[bytes], data: bytes) -> None:
        try:
            stream.write(data)
            stream.flush()
        except (OSError, ValueError) as e:
            self._log.debug(f"Writing stdin failed: {e}")
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _pump(self, reader: _StreamReader) -> None:
        """Read the pipe line by line and deliver to the channel's observers.

        End-of-stream is never delivered. After an error line, if the
        process is already gone, this reader delivers the exit
        notification itself once its stream is drained, in case the
        exit watcher's notification is late or lost.
        """
        stream = reader.stream
        channel = reader.channel
        label = "Output" if channel is Channel.OUTPUT else "Error"
        exit_seen = False
        try:
            while True:
                reader.blocked = True
                raw = stream.readline()
                reader.blocked = False
                if not raw:
                    break
                line = self._decode(raw)
                exited = self._process_exited()
                if exited:
                    self._mark_finished()
                self._log.debug(f'{label} - "{line}" exited:{exited}')
                self._deliver(channel, line)
                if channel is Channel.ERROR and exited:
                    exit_seen = True
        except (OSError, ValueError) as e:
            self._log.debug(f"{label} stream read failed, treating as end of stream: {e}")
        finally:
            reader.blocked = False
            try:
                stream.close()
            except OSError:
                pass

        if exit_seen:
            self._finish(ExitSource.ERROR_READER)

    def _deliver(self, channel: Channel, line: str) -> None:
        # Only reachable for a reader given up on by a bounded drain
        if self._exit_notified:
            self._log.debug(f"Dropping {channel.value} line after exit notification: {line!r}")
            return
        self._observers.dispatch(channel, line)

    def _watch_exit(self, process: subprocess.Popen[bytes]) -> None:
        while True:
            try:
                process.wait(timeout=_WATCH_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                continue

        self._log.debug(
            f"Subprocess completed pid={process.pid} returncode={process.returncode}"
        )
        self._finish(ExitSource.EXIT_WATCHER)

    def _finish(self, source: ExitSource) -> None:
        """Wait for the other readers to drain, then notify exit."""
        self._mark_finished()

        deadline = None
        if self._drain_timeout is not None:
            deadline = time.monotonic() + self._drain_timeout
        current = threading.current_thread()
        for reader in self._readers:
            if reader.thread is None or reader.thread is current:
                continue
            self._join_reader(reader, deadline)

        self._notify_exit(source)

    def _join_reader(self, reader: _StreamReader, deadline: float | None) -> None:
        """Wait for a reader to reach end-of-stream.

        Past ``deadline`` a reader is given up on only while it is blocked
        on its pipe; a reader handling a line is always waited for.
        """
        thread = reader.thread
        if deadline is None:
            thread.join()
            return

        while thread.is_alive():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                if reader.blocked:
                    self._log.debug(
                        f"{thread.name} still open after {self._drain_timeout:.1f}s drain timeout"
                    )
                    return
                remaining = _DRAIN_POLL
            thread.join(min(remaining, _DRAIN_POLL))

    def _notify_exit(self, source: ExitSource) -> bool:
        """Deliver the exit notification unless it was already delivered.

        Returns:
            True if this call delivered it
        """
        with self._lock:
            if self._exit_notified:
                previous = self._exit_source.value if self._exit_source else None
                self._log.debug(f"Exit already notified by {previous}, ignoring {source.value}")
                return False
            self._exit_notified = True
            self._exit_source = source
            self._notifying_thread = threading.current_thread()

        self._log.debug(f"Exit (source={source.value})")
        try:
            self._observers.dispatch(Channel.EXIT, self)
        finally:
            self._drained.set()
        return True

    def _posix_kill(self, process: subprocess.Popen[bytes]) -> None:
        """Send SIGKILL to the process group on POSIX systems.

        ProcessLookupError propagates to ``kill()``.
        """
        try:
            # Group id equals pid because of start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            self._log.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except PermissionError as e:
            self._log.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()
