"""Error types for the process runtime.

Only precondition violations are raised across the public interface.
Launch failures are described by ``LaunchFailure`` and delivered to
observers as an error line instead of being thrown.
"""

from __future__ import annotations

import errno as errno_codes
from collections.abc import Mapping
from dataclasses import dataclass, field

__all__ = [
    "LaunchFailure",
    "ProcessRunnerError",
    "ProcessStateError",
]


class ProcessRunnerError(Exception):
    """Base class for runner errors."""


class ProcessStateError(ProcessRunnerError):
    """Operation called in a lifecycle state that does not allow it.

    Examples: ``run()`` on a runner that already ran, reading ``pid``
    before the process started.
    """

    def __init__(self, operation: str, state: object) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while process is {state}")


@dataclass(frozen=True)
class LaunchFailure:
    """Why a process could not be started.

    Attributes:
        reason: Human readable reason from the OS error
        errno: OS error number, if any
        command: The command that was attempted
        environment: The fully resolved environment passed to the child
    """

    reason: str
    errno: int | None
    command: str
    environment: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        command: str,
        environment: Mapping[str, str],
    ) -> "LaunchFailure":
        """Build from the exception ``Popen`` raised.

        ``OSError`` carries errno and filename; anything else (the
        ``ValueError`` for an embedded null byte, for instance) contributes
        only its message.
        """
        if not isinstance(exc, OSError):
            return cls(
                reason=str(exc) or type(exc).__name__,
                errno=None,
                command=command,
                environment=dict(environment),
            )

        reason = exc.strerror or str(exc)
        if exc.filename:
            reason = f"{reason}: {exc.filename!r}"
        return cls(
            reason=reason,
            errno=exc.errno,
            command=command,
            environment=dict(environment),
        )

    @property
    def is_missing_executable(self) -> bool:
        return self.errno == errno_codes.ENOENT

    def format(self) -> str:
        """Render the single diagnostic line sent on the error channel.

        The resolved environment is appended one ``KEY:VALUE`` per line
        so PATH problems can be diagnosed from the event alone.
        """
        lines = [f"Failed to start {self.command!r}: {self.reason}"]
        if self.errno is not None:
            lines.append(f"Error code {self.errno}")
        if self.is_missing_executable:
            lines.append("The system cannot find the file specified.")
        for key in sorted(self.environment):
            lines.append(f"{key}:{self.environment[key]}")
        return "\n".join(lines)
