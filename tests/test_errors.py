"""Runtime error type tests."""

from __future__ import annotations

import errno

from proc_observer.runtime.errors import LaunchFailure, ProcessStateError


class TestLaunchFailure:
    """Diagnostic formatting."""

    def test_from_os_error(self):
        exc = FileNotFoundError(errno.ENOENT, "No such file or directory", "/bin/missing")

        failure = LaunchFailure.from_exception(exc, "/bin/missing", {"PATH": "/bin"})

        assert failure.errno == errno.ENOENT
        assert "No such file or directory" in failure.reason
        assert "/bin/missing" in failure.reason
        assert failure.is_missing_executable
        assert failure.environment == {"PATH": "/bin"}

    def test_format_missing_executable(self):
        failure = LaunchFailure(
            reason="No such file or directory",
            errno=errno.ENOENT,
            command="git",
            environment={"PATH": "/usr/bin", "HOME": "/root"},
        )

        lines = failure.format().splitlines()

        assert lines[0] == "Failed to start 'git': No such file or directory"
        assert lines[1] == f"Error code {errno.ENOENT}"
        assert lines[2] == "The system cannot find the file specified."
        # Environment sorted by key
        assert lines[3:] == ["HOME:/root", "PATH:/usr/bin"]

    def test_format_permission_denied(self):
        failure = LaunchFailure(
            reason="Permission denied",
            errno=errno.EACCES,
            command="./tool",
        )

        text = failure.format()

        assert "Permission denied" in text
        assert "cannot find the file" not in text
        assert not failure.is_missing_executable

    def test_format_without_errno(self):
        failure = LaunchFailure(reason="weird", errno=None, command="x")
        assert failure.format() == "Failed to start 'x': weird"

    def test_from_os_error_without_strerror(self):
        failure = LaunchFailure.from_exception(OSError("bare message"), "x", {})
        assert failure.reason == "bare message"
        assert failure.errno is None


class TestProcessStateError:
    def test_message(self):
        err = ProcessStateError("run", "running")

        assert err.operation == "run"
        assert err.state == "running"
        assert str(err) == "Cannot run while process is running"


class TestLaunchFailureFromValueError:
    """Popen rejects some arguments with ValueError before exec."""

    def test_message_kept_without_errno(self):
        failure = LaunchFailure.from_exception(
            ValueError("embedded null byte"), "echo", {"PATH": "/bin"}
        )

        assert failure.reason == "embedded null byte"
        assert failure.errno is None
        assert not failure.is_missing_executable
        assert failure.format().splitlines() == [
            "Failed to start 'echo': embedded null byte",
            "PATH:/bin",
        ]
