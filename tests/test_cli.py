"""Command line entry point tests."""

from __future__ import annotations

import io
import sys

import pytest

from proc_observer import cli


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch: pytest.MonkeyPatch):
    """Keep the CLI from reconfiguring the root logger during tests."""
    monkeypatch.setattr(cli, "setup_logging", lambda config: None)


def _run(argv: list[str]) -> tuple[int, list[str]]:
    out = io.StringIO()
    code = cli.main(argv, out=out)
    return code, out.getvalue().splitlines()


class TestMain:
    def test_prefixes_streams(self):
        code, lines = _run(
            [sys.executable, "-c", "import sys; print('hi'); print('warn', file=sys.stderr)"]
        )

        assert code == 0
        assert sorted(lines) == ["err| warn", "out| hi"]

    def test_exit_code_passthrough(self):
        code, _ = _run([sys.executable, "-c", "raise SystemExit(5)"])
        assert code == 5

    def test_launch_failure(self):
        code, lines = _run(["/nonexistent/binary"])

        assert code == cli.EXIT_LAUNCH_FAILED
        assert len(lines) >= 1
        assert lines[0].startswith("err| Failed to start")

    def test_timeout(self):
        code, _ = _run(["--timeout", "0.3", sys.executable, "-c", "import time; time.sleep(30)"])
        assert code == cli.EXIT_TIMEOUT

    def test_env_and_cwd(self, temp_workspace):
        code, lines = _run(
            [
                "--env",
                "PROC_OBSERVER_CLI=value",
                "--cwd",
                str(temp_workspace),
                sys.executable,
                "-c",
                "import os; print(os.environ['PROC_OBSERVER_CLI']); print(os.path.basename(os.getcwd()))",
            ]
        )

        assert code == 0
        assert lines == ["out| value", f"out| {temp_workspace.name}"]

    def test_bad_env_pair(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--env", "NOEQUALS", sys.executable, "-c", "pass"], out=io.StringIO())
        assert exc_info.value.code == 2

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_signal_exit_status(self):
        code, _ = _run(
            [sys.executable, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"]
        )
        assert code == 128 + 15


class TestParser:
    def test_parser_usage(self):
        parser = cli.build_parser()
        args = parser.parse_args(["--timeout", "2", "git", "log", "--oneline"])

        assert args.timeout == 2.0
        assert args.command == "git"
        assert args.arguments == ["log", "--oneline"]
