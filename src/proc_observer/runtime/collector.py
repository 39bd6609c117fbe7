"""Collect a process's output into a result object.

Convenience layer over ProcessRunner for callers that do not need
streaming: wire observers, run, wait (killing on timeout), return
everything that was seen.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

import anyio

from .process_runner import ProcessConfiguration, ProcessRunner

__all__ = [
    "ProcessResult",
    "run_process",
    "run_process_async",
]

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Everything observed from one process run.

    Attributes:
        output_lines: stdout lines in order
        error_lines: stderr lines in order (or the launch diagnostic)
        exit_code: return code, None if the process never started
        timed_out: the timeout elapsed and the process was killed
        launch_failed: the process could not be started
    """

    output_lines: list[str] = field(default_factory=list)
    error_lines: list[str] = field(default_factory=list)
    exit_code: int | None = None
    timed_out: bool = False
    launch_failed: bool = False

    @property
    def ok(self) -> bool:
        return not self.launch_failed and not self.timed_out and self.exit_code == 0

    @property
    def stdout(self) -> str:
        return "\n".join(self.output_lines)

    @property
    def stderr(self) -> str:
        return "\n".join(self.error_lines)


def run_process(
    config: ProcessConfiguration,
    *,
    timeout: float | None = None,
    log: logging.Logger | None = None,
) -> ProcessResult:
    """Run a process to completion and collect its lines.

    Args:
        config: Process configuration
        timeout: Seconds before the process is killed (None = no limit)
        log: Logger passed through to the runner

    Returns:
        ProcessResult with lines and exit code
    """
    result = ProcessResult()
    # Readers append from their own threads
    lock = threading.Lock()

    def on_output(line: str) -> None:
        with lock:
            result.output_lines.append(line)

    def on_error(line: str) -> None:
        with lock:
            result.error_lines.append(line)

    with ProcessRunner(config, logger=log) as runner:
        runner.on_output(on_output)
        runner.on_error(on_error)
        runner.run()

        if runner.launch_failure is not None:
            result.launch_failed = True
            return result

        if not runner.wait_for_exit(timeout):
            logger.debug(f"Timed out after {timeout}s, killing pid={runner.pid}")
            result.timed_out = True
            runner.kill()
            runner.wait_for_exit()

        result.exit_code = runner.exit_code

    return result


async def run_process_async(
    config: ProcessConfiguration,
    *,
    timeout: float | None = None,
    log: logging.Logger | None = None,
) -> ProcessResult:
    """``run_process`` in a worker thread for async callers."""
    return await anyio.to_thread.run_sync(
        lambda: run_process(config, timeout=timeout, log=log)
    )
