"""Command line entry point.

Usage:
    proc-observer [--timeout S] [--cwd DIR] [--env KEY=VALUE ...] -- CMD [ARGS...]

Runs CMD, prints each stdout line as ``out| ...`` and each stderr line as
``err| ...`` as they arrive, and exits with the child's exit code
(127 if it could not be started, 124 on timeout, 128+N for signal N).
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Sequence, TextIO

from .config import Config, get_config
from .runtime import ProcessConfiguration, ProcessRunner

__all__ = ["main", "build_parser", "setup_logging"]

logger = logging.getLogger(__name__)

EXIT_LAUNCH_FAILED = 127
EXIT_TIMEOUT = 124


def setup_logging(config: Config) -> None:
    """Configure logging: DEBUG to a temp file, or INFO to stderr."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("proc_observer").setLevel(log_level)


def _parse_env(pairs: Sequence[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proc-observer",
        description="Run a command and stream its output and exit as events.",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Kill after this many seconds")
    parser.add_argument("--cwd", type=Path, default=None, help="Working directory")
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment override (repeatable)",
    )
    parser.add_argument("command", help="Executable to run")
    parser.add_argument("arguments", nargs=argparse.REMAINDER, help="Arguments for the command")
    return parser


def _exit_status(runner: ProcessRunner) -> int:
    code = runner.exit_code
    if code is None:
        return EXIT_LAUNCH_FAILED
    if code < 0:
        return 128 - code
    return code


def main(argv: Sequence[str] | None = None, out: TextIO | None = None) -> int:
    """Run the CLI. Returns the process exit status."""
    out = out if out is not None else sys.stdout
    parser = build_parser()
    args = parser.parse_args(argv)

    arguments = list(args.arguments)
    if arguments and arguments[0] == "--":
        arguments = arguments[1:]

    try:
        env = _parse_env(args.env)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    config = get_config()
    setup_logging(config)

    configuration = ProcessConfiguration(
        command=args.command,
        arguments=arguments,
        working_directory=args.cwd,
        environment=env or None,
    )

    print_lock = threading.Lock()

    def emit(prefix: str, line: str) -> None:
        with print_lock:
            out.write(f"{prefix}| {line}\n")
            out.flush()

    with ProcessRunner(configuration, logger=logging.getLogger("proc_observer.runner")) as runner:
        runner.on_output(lambda line: emit("out", line))
        runner.on_error(lambda line: emit("err", line))
        runner.run()

        if not runner.wait_for_exit(args.timeout):
            logger.warning(f"Timed out after {args.timeout}s, killing pid={runner.pid}")
            runner.kill()
            runner.wait_for_exit()
            return EXIT_TIMEOUT

        return _exit_status(runner)
