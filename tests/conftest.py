"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the import path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
CHATTY_SCRIPT = FIXTURES_DIR / "chatty.py"

from proc_observer.config import reload_config  # noqa: E402


class EventRecorder:
    """Thread-safe sink for runner events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.output: list[str] = []
        self.errors: list[object] = []
        self.exits: list[object] = []
        self.events: list[tuple[str, object]] = []
        self.exited = threading.Event()

    def on_output(self, line: str) -> None:
        with self._lock:
            self.output.append(line)
            self.events.append(("output", line))

    def on_error(self, line: object) -> None:
        with self._lock:
            self.errors.append(line)
            self.events.append(("error", line))

    def on_exit(self, runner: object) -> None:
        with self._lock:
            self.exits.append(runner)
            self.events.append(("exit", runner))
        self.exited.set()

    def attach(self, runner) -> None:
        runner.on_output(self.on_output)
        runner.on_error(self.on_error)
        runner.on_exit(self.on_exit)

    def snapshot(self) -> tuple[int, int, int]:
        with self._lock:
            return len(self.output), len(self.errors), len(self.exits)


@pytest.fixture(autouse=True)
def _fresh_config():
    """Each test sees configuration from the current environment."""
    reload_config()
    yield
    reload_config()


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def chatty() -> list[str]:
    """argv prefix for the chatty fixture script."""
    return [sys.executable, str(CHATTY_SCRIPT)]
